import logging

import streamlit as st
from requests.exceptions import HTTPError

from config import get_auth, is_admin, settings

logger = logging.getLogger(__name__)

# Custom CSS for better styling
st.markdown("""
    <style>
    .main {
        padding: 1rem;
    }
    .stButton>button {
        width: 100%;
        margin-top: 1rem;
    }
    </style>
""", unsafe_allow_html=True)

# Initialize session state for login if not already present
if 'logged_in' not in st.session_state:
    st.session_state.logged_in = False
    st.session_state.email = None
    st.session_state.user_token = None


def login_user(email, password):
    try:
        user = get_auth().sign_in_with_email_and_password(email, password)
    except HTTPError as e:
        logger.warning("Failed sign in for %s: %s", email, e)
        st.error("Error de inicio de sesión: Usuario o contraseña incorrectos.")
        return
    st.session_state.logged_in = True
    st.session_state.email = user['email']
    st.session_state.user_token = user['idToken']
    logger.info("User %s signed in", user['email'])
    st.cache_data.clear()
    st.rerun()


def logout_user():
    st.session_state.logged_in = False
    st.session_state.email = None
    st.session_state.user_token = None
    st.cache_data.clear()
    st.rerun()


# --- Page Logic ---
if not st.session_state.logged_in:
    st.markdown("<h2 style='text-align: center;'>Iniciar Sesión</h2>", unsafe_allow_html=True)
    st.caption(settings["school"]["name"])

    with st.form("login_form"):
        email = st.text_input("Correo Electrónico", key="login_email")
        password = st.text_input("Contraseña", type="password", key="login_password")
        submitted = st.form_submit_button("Iniciar Sesión", type="primary")

        if submitted:
            if email and password:
                login_user(email, password)
            else:
                st.warning("Por favor, ingrese su correo y contraseña.")

else:
    user_name = st.session_state.email.split('@')[0].capitalize() if st.session_state.email else "Usuario"

    st.sidebar.title(f"Bienvenido, {user_name}")
    if st.session_state.get('email'):
        st.sidebar.write(st.session_state.email)
    if st.sidebar.button("Cerrar Sesión"):
        logout_user()

    st.title("🍽️ PAE - Control de Restaurante Escolar")
    st.write(f"### {settings['school']['name']}")
    st.write("Seleccione una opción del menú lateral para continuar.")
    if is_admin():
        st.info("Tiene acceso a la sección de Administración.")
