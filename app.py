import logging

import streamlit as st

import config
import views
from auth import UserSession
from database import Database, PersistenceError
from services import InventoryService

config.setup_logging()
logger = logging.getLogger(__name__)

# Page Configuration
st.set_page_config(
    page_title=config.APP_TITLE,
    page_icon="🏫",
    layout="wide",
    initial_sidebar_state="expanded"
)


@st.cache_resource
def get_database():
    db = Database()
    if config.SEED_SAMPLE_DATA:
        seeded = db.seed_sample_records()
        if seeded:
            logger.info("Seeded %d sample records", seeded)
    return db


class RecordFeed:
    """Latest record snapshot for one browser session, refreshed by the store subscription.

    The store only keeps a weak reference to ``_on_change``; when the session state
    holding the feed goes away the subscription goes with it.
    """

    def __init__(self, service):
        self.records = []
        self.error = None
        try:
            self.unsubscribe = service.subscribe(self._on_change)
        except PersistenceError as e:
            self.error = str(e)
            self.unsubscribe = lambda: None

    def _on_change(self, records):
        self.records = records


db = get_database()
service = InventoryService(db)

# --- SESSION STATE MANAGEMENT ---
if 'user' not in st.session_state: st.session_state.user = None
if 'feed' not in st.session_state: st.session_state.feed = None


def logout():
    if st.session_state.feed is not None:
        st.session_state.feed.unsubscribe()
    st.session_state.user = None
    st.session_state.feed = None


# --- AUTHENTICATION FLOW ---
if st.session_state.user is None:
    col1, col2, col3 = st.columns([1, 1, 1])
    with col2:
        st.header(f"🏫 {config.APP_TITLE}")
        t_login, t_register = st.tabs(["Login", "Register"])
        with t_login:
            username = st.text_input("Username")
            password = st.text_input("Password", type="password")
            if st.button("Login", type="primary", use_container_width=True):
                found = db.verify_user(username, password)
                if found:
                    _, uname, name, role = found
                    st.session_state.user = UserSession(username=uname, role=role, name=name or "")
                    logger.info("%s logged in as %s", uname, role)
                    st.rerun()
                else:
                    st.error("Invalid Credentials")
        with t_register:
            with st.form("register"):
                new_name = st.text_input("Name")
                new_user = st.text_input("Username", key="reg_user")
                new_pass = st.text_input("Password", type="password", key="reg_pass")
                if st.form_submit_button("Create Account", use_container_width=True):
                    if not new_user or not new_pass:
                        st.error("Username and password are required.")
                    elif db.add_user(new_user, new_pass, new_name, config.ROLE_USER):
                        st.success("Account created. You can log in now.")
                    else:
                        st.error("Username already exists.")
else:
    user = st.session_state.user
    if st.session_state.feed is None:
        st.session_state.feed = RecordFeed(service)
        logger.debug("%d live record feeds", db.listener_count())
    feed = st.session_state.feed

    # --- MAIN APP LAYOUT ---
    st.sidebar.title(f"🏫 {config.APP_TITLE}")
    st.sidebar.caption(f"Version {config.APP_VERSION}")
    st.sidebar.info(f"User: **{user.display_name}**\nRole: **{user.role}**")
    st.sidebar.divider()

    options = ["Inventaris"]
    if user.is_admin: options = ["Dashboard", "Inventaris", "Laporan", "Admin"]
    choice = st.sidebar.radio("Navigation", options)
    st.sidebar.markdown("---")

    if st.sidebar.button("Logout", type="secondary"):
        logout()
        st.rerun()

    if feed.error:
        st.error(f"Could not load inventory data: {feed.error}")

    if choice == "Dashboard": views.show_dashboard(service, user, feed.records)
    elif choice == "Inventaris": views.show_inventory(service, user, feed.records)
    elif choice == "Laporan": views.show_reports(service, user, feed.records)
    elif choice == "Admin": views.show_admin(db, user)
