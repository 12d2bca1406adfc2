import streamlit as st

from config import is_admin

pages = {
    "Inicio": [
        st.Page("Login.py", title="Login")
    ],
}

if st.session_state.get('logged_in', False):
    pages["PAE"] = [
        st.Page("pages/1_Registro.py", title="Registro"),
        st.Page("pages/2_Reportes.py", title="Reportes"),
        st.Page("pages/4_Horario.py", title="Horario"),
        st.Page("pages/5_Perfil.py", title="Mi perfil"),
    ]
    if is_admin():
        pages["Administración"] = [
            st.Page("pages/3_Administracion.py", title="Administración"),
        ]

pg = st.navigation(pages)
pg.run()
