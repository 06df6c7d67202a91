import binascii

import ecdsa

from errors import InvalidCredentials

_KEY_ERRORS = (binascii.Error, ValueError, TypeError, AssertionError, ecdsa.MalformedPointError)


def generate_key_pair():
    # Generate SECP256k1 keys (Bitcoin standard)
    sk = ecdsa.SigningKey.generate(curve=ecdsa.SECP256k1)
    pk = sk.get_verifying_key()
    return (
        binascii.hexlify(sk.to_string()).decode(),
        binascii.hexlify(pk.to_string()).decode()
    )


def account_for(private_key_hex):
    """The account (hex public key) controlled by a private key."""
    try:
        sk = ecdsa.SigningKey.from_string(binascii.unhexlify(private_key_hex), curve=ecdsa.SECP256k1)
    except _KEY_ERRORS as err:
        raise InvalidCredentials("malformed private key") from err
    return binascii.hexlify(sk.get_verifying_key().to_string()).decode()


def sign_transaction(private_key_hex, message):
    try:
        sk_bytes = binascii.unhexlify(private_key_hex)
        sk = ecdsa.SigningKey.from_string(sk_bytes, curve=ecdsa.SECP256k1)
    except _KEY_ERRORS:
        return None
    signature = sk.sign(message.encode())
    return binascii.hexlify(signature).decode()


def verify_signature(public_key_hex, message, signature_hex):
    if signature_hex is None:
        return False
    try:
        pk_bytes = binascii.unhexlify(public_key_hex)
        sig_bytes = binascii.unhexlify(signature_hex)
        pk = ecdsa.VerifyingKey.from_string(pk_bytes, curve=ecdsa.SECP256k1)
        return pk.verify(sig_bytes, message.encode())
    except ecdsa.BadSignatureError:
        return False
    except _KEY_ERRORS:
        return False


def authenticate(private_key_hex, message):
    """Sign ``message`` and check it against the derived account.

    Returns the caller's account, which the ledger then uses as the
    implicit identity of the request.
    """
    account = account_for(private_key_hex)
    if not verify_signature(account, message, sign_transaction(private_key_hex, message)):
        raise InvalidCredentials("signature does not verify against the derived account")
    return account
