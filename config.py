import copy
import logging
import os

import pyrebase
import streamlit as st
import yaml
from yaml.loader import SafeLoader

from firebase_config import FirebaseStore
from utils import local_now, local_today

DEFAULT_SETTINGS = {
    "firebase": {
        "apiKey": "",
        "authDomain": "",
        "databaseURL": "",
        "projectId": "",
        "storageBucket": "",
        "messagingSenderId": "",
        "appId": "",
        "service_account": "firebase-key.json",
    },
    "school": {
        "name": "Institución Educativa Barroblanco",
        "sedes": ["Principal", "Primaria", "Maria Inmaculada"],
        "admin_emails": [],
        "timezone": "America/Bogota",
    },
    "reports": {
        "batch_size": 100,
        "pdf_detail_limit": 50,
        "excluded_group_pattern": r"20\d{2}",
        "max_column_width": 50,
    },
    "logging": {
        "level": "INFO",
    },
}


def _merge(base, override):
    result = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def load_settings(path=None):
    """
    Load settings from a YAML file merged over DEFAULT_SETTINGS.

    Args:
        path (str, optional): Settings file. Defaults to $PAE_CONFIG or 'config.yaml'.

    Returns:
        dict: The merged settings. Missing files fall back to the defaults.
    """
    path = path or os.environ.get("PAE_CONFIG", "config.yaml")
    if not os.path.exists(path):
        return copy.deepcopy(DEFAULT_SETTINGS)
    with open(path, "r", encoding="utf-8") as file:
        loaded = yaml.load(file, Loader=SafeLoader) or {}
    return _merge(DEFAULT_SETTINGS, loaded)


settings = load_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, str(settings["logging"]["level"]).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@st.cache_resource
def get_firebase():
    """Initialize the pyrebase client used for email/password sign in."""
    firebase_config = {k: v for k, v in settings["firebase"].items() if k != "service_account"}
    logger.info("Initializing pyrebase for project %s", firebase_config.get("projectId"))
    return pyrebase.initialize_app(firebase_config)


def get_auth():
    return get_firebase().auth()


@st.cache_resource
def get_store():
    """Server-side data store shared by every session."""
    return FirebaseStore(
        settings["firebase"]["service_account"],
        settings["firebase"]["databaseURL"],
    )


def school_now():
    return local_now(settings["school"]["timezone"])


def school_today():
    """Today at the school, used as the reference day of every period."""
    return local_today(settings["school"]["timezone"])


def is_admin():
    email = st.session_state.get("email")
    return bool(email) and email in settings["school"]["admin_emails"]


def check_auth(admin_only=False):
    """Stop the page if the user is not logged in (or not an admin when required)."""
    if not st.session_state.get("logged_in", False):
        st.error("Debe iniciar sesión para acceder a esta página.")
        st.info("Por favor, regrese a la página principal para iniciar sesión.")
        st.stop()
    if admin_only and not is_admin():
        st.error("Esta sección es solo para administradores.")
        st.stop()


def setup_page(title):
    """Common page setup with title."""
    st.set_page_config(page_title=title, layout="centered")
    st.title(title)
