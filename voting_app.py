import os
import threading

import streamlit as st

from config import load_config
from database import event_frame, tally_frame, voter_frame
from errors import AlreadyVoted, LedgerError, InvalidCredentials
from ledger import Election
from logging_config import configure_structlog
from blockchain import EventLog
from wallet import authenticate, generate_key_pair

# --- CONFIGURATION ---
config_data = load_config()
BC_PATH = config_data["chain_path"]

configure_structlog(config_data["log_environment"])
st.set_page_config(layout="wide", page_title="DecentralVote")


# --- LEDGER LOADING ---
# One Election per server process, shared by every session, so all writes
# go through the same lock and the same in-memory chain.
@st.cache_resource
def election_holder():
    if os.path.exists(BC_PATH):
        return {"election": Election.open(BC_PATH), "lock": threading.Lock()}
    return {"election": None, "lock": threading.Lock()}


holder = election_holder()
election = holder["election"]

if 'admin_account' not in st.session_state:
    st.session_state.admin_account = None

query_params = st.query_params
current_page = query_params.get("page", "voter")


# --- UI COMPONENTS ---
def show_results():
    st.header("📊 Live Results")
    if election is None:
        st.info("🕒 The election has not been opened yet.")
        return
    results_df = tally_frame(election)
    if results_df.empty:
        st.info("No candidates have been registered yet.")
        return
    col1, col2 = st.columns([1, 1])
    with col1:
        st.subheader("Vote Count Tally")
        st.table(results_df.set_index('Candidate')[['Votes', 'Share']])
        st.metric("Total Votes Cast", election.total_votes())
    with col2:
        st.subheader("Visual Representation")
        st.bar_chart(results_df.set_index('Candidate')['Votes'])


def show_ledger():
    st.header("🔗 Blockchain Ledger")
    if election is None:
        st.info("The ledger is empty.")
        return
    st.dataframe(event_frame(election), width='stretch')
    for block in reversed(election.event_log.chain):
        with st.expander(f"Block #{block.index} - Hash: {block.hash[:15]}..."):
            st.json(block.to_dict())


def show_keys(title, priv, pub):
    st.success(title)
    st.write("**Account:**")
    st.code(pub)
    st.warning("COPY THIS PRIVATE KEY:")
    st.code(priv)


# --- PAGE ROUTING ---
if current_page == "host":
    st.title("🛡️ Host Administration Portal")
    tab_host, tab_res, tab_ledg = st.tabs(["⚙️ Controls", "📊 Results", "🔗 Ledger"])

    with tab_host:
        if election is None:
            st.subheader("Open the Election")
            st.info("The administrator account is fixed for the lifetime of the election.")
            if st.button("🚀 Create Election"):
                with holder["lock"]:
                    if holder["election"] is None:
                        priv, admin = generate_key_pair()
                        try:
                            holder["election"] = Election.create(admin, EventLog(BC_PATH))
                        except LedgerError as err:
                            st.error(str(err))
                        else:
                            show_keys("Election opened. You are the administrator.", priv, admin)
                    else:
                        st.warning("Another session has already opened the election.")
                election = holder["election"]
        elif st.session_state.admin_account != election.administrator():
            st.subheader("Admin Login")
            key_input = st.text_input("Administrator Private Key", type="password")
            if st.button("Unlock Portal"):
                try:
                    caller = authenticate(key_input, "admin-login")
                except InvalidCredentials:
                    st.error("Invalid Private Key.")
                else:
                    if caller == election.administrator():
                        st.session_state.admin_account = caller
                        st.rerun()
                    else:
                        st.error("❌ This account is not the election administrator.")
        else:
            st.success("Authenticated as Administrator")
            st.caption(f"Owner: {election.administrator()[:10]}...{election.administrator()[-8:]}")

            st.subheader("📝 Candidate Management")
            with st.form("candidate_form"):
                new_name = st.text_input("New candidate name")
                if st.form_submit_button("+ Add Candidate") and new_name:
                    try:
                        election.register(st.session_state.admin_account, new_name)
                    except LedgerError as err:
                        st.error(str(err))
                    else:
                        st.success(f"Candidate \"{new_name}\" added successfully! ✅")
                        st.rerun()

            missing = [c for c in config_data["default_candidates"] if c not in election.candidates()]
            if missing and st.button(f"Register default candidates ({', '.join(missing)})"):
                try:
                    for name in missing:
                        election.register(st.session_state.admin_account, name)
                except LedgerError as err:
                    st.error(str(err))
                else:
                    st.rerun()

            st.write("**Registered Candidates:**")
            for c in election.candidates():
                st.write(f"- {c}")

            st.divider()
            st.subheader("👥 Voter Audit")
            st.dataframe(voter_frame(election), width='stretch')

    with tab_res: show_results()
    with tab_ledg: show_ledger()

else: # Voter Portal
    st.title("🗳️ Public Voter Portal")
    t_acct, t_vote, t_res, t_ledg = st.tabs(["🔑 Account", "🗳️ Cast Vote", "📊 Results", "🔗 Ledger"])

    with t_acct:
        st.subheader("Create a Voting Account")
        if st.button("Generate Key Pair"):
            show_keys("Account created.", *generate_key_pair())

    with t_vote:
        if election is None:
            st.info("🕒 Voting has not started yet.")
        elif not election.candidates():
            st.info("🕒 No candidates have been registered yet.")
        else:
            st.subheader("Secure Voting Form")
            with st.form("vote_form"):
                v_sk = st.text_input("Your Private Key", type="password")
                choice = st.selectbox("Select Candidate", election.candidates())
                if st.form_submit_button("Cast Ballot"):
                    try:
                        voter = authenticate(v_sk, f"vote-{choice}")
                        election.cast_vote(voter, choice)
                    except InvalidCredentials:
                        st.error("Invalid Private Key.")
                    except AlreadyVoted:
                        st.info("✓ You've already voted")
                    except LedgerError as err:
                        st.warning(str(err))
                    else:
                        st.success(f"Successfully voted for {choice}! 🎉")

    with t_res: show_results()
    with t_ledg: show_ledger()
