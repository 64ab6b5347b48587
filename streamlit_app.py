from __future__ import annotations

import base64
import json
import os
from datetime import date, datetime, timedelta, timezone

import requests
import streamlit as st

st.set_page_config(page_title="Booking", layout="wide")

API_BASE = os.getenv("API_BASE", "http://127.0.0.1:8000")



# JWT helpers (UI only, signature is not verified)

def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def jwt_payload(token: str) -> dict:
    try:
        parts = token.split(".")
        if len(parts) != 3:
            return {}
        payload = json.loads(_b64url_decode(parts[1]).decode("utf-8"))
        return payload if isinstance(payload, dict) else {}
    except (ValueError, UnicodeDecodeError):
        return {}


def jwt_is_expired(token: str) -> bool:
    p = jwt_payload(token)
    try:
        exp_int = int(p.get("exp"))
    except (TypeError, ValueError):
        return False

    now = int(datetime.now(tz=timezone.utc).timestamp())
    return now >= (exp_int - 5)


def jwt_name(token: str) -> str:
    p = jwt_payload(token)
    return str(p.get("name") or p.get("sub") or "user")



# HTTP client (with JWT)

class ApiError(Exception):
    pass


def _headers(token: str | None) -> dict:
    return {"Authorization": f"Bearer {token}"} if token else {}


def _handle(r: requests.Response) -> dict | list:
    if r.status_code == 401 and "error" not in r.text:
        raise PermissionError("401 Unauthorized (invalid/expired token or backend restarted).")
    if r.status_code >= 400:
        try:
            body = r.json()
        except ValueError:
            r.raise_for_status()
        raise ApiError(body.get("error") or body.get("detail") or f"HTTP {r.status_code}")
    return r.json()


def api_get(path: str, token: str | None = None, params: dict | None = None) -> dict | list:
    r = requests.get(f"{API_BASE}{path}", headers=_headers(token), params=params, timeout=10)
    return _handle(r)


def api_post(path: str, payload: dict, token: str | None = None) -> dict:
    r = requests.post(f"{API_BASE}{path}", headers=_headers(token), json=payload, timeout=10)
    return _handle(r)


def api_put(path: str, token: str | None = None) -> dict:
    r = requests.put(f"{API_BASE}{path}", headers=_headers(token), timeout=10)
    return _handle(r)


def api_delete(path: str, token: str | None = None) -> dict:
    r = requests.delete(f"{API_BASE}{path}", headers=_headers(token), timeout=10)
    return _handle(r)


def api_login(email: str, password: str) -> str:
    # OAuth2PasswordRequestForm => x-www-form-urlencoded
    r = requests.post(
        f"{API_BASE}/api/auth/login",
        data={"username": email, "password": password},
        timeout=10,
    )
    r.raise_for_status()
    return r.json()["access_token"]


def is_logged_in() -> bool:
    token = st.session_state.get("token")
    return bool(token) and isinstance(token, str) and len(token) > 0


def do_logout() -> None:
    st.session_state.pop("token", None)
    st.session_state.pop("auth_error", None)
    st.rerun()


def require_auth() -> str | None:
    token = st.session_state.get("token")
    if not token:
        st.warning("Please log in from the sidebar.")
        return None

    if jwt_is_expired(token):
        st.error("Session expired. Log out from the sidebar and log in again.")
        return None

    return token



# Sidebar login

with st.sidebar:
    st.header("Account")

    token = st.session_state.get("token")

    if not is_logged_in():
        e = st.text_input("Email", key="login_email")
        p = st.text_input("Password", type="password", key="login_pass")

        if st.button("Login", key="login_btn"):
            try:
                st.session_state["token"] = api_login(e.strip().lower(), p)
                st.session_state.pop("auth_error", None)
                st.success("Logged in.")
                st.rerun()
            except requests.HTTPError:
                st.error("Invalid credentials.")
            except requests.RequestException as ex:
                st.error(str(ex))
    else:
        st.write(f"User: **{jwt_name(token)}**")

        if st.session_state.get("auth_error"):
            st.error(st.session_state["auth_error"])

        if st.button("Logout", key="logout_btn"):
            do_logout()

    st.divider()
    st.caption(f"API: {API_BASE}")



# UI

st.title("Booking")

tab1, tab2, tab3 = st.tabs(["Book", "My appointments", "Notifications"])


@st.cache_data(ttl=10)
def load_providers() -> list[dict]:
    return api_get("/api/providers")  # public



# TAB 1 - Book

with tab1:
    st.subheader("Book an appointment")

    token = require_auth()
    if token:
        try:
            providers = load_providers()
        except (requests.RequestException, ApiError) as ex:
            st.error(f"API unreachable: {ex}")
            st.stop()

        col_a, col_b = st.columns(2)
        with col_a:
            provider = st.selectbox(
                "Provider",
                options=providers,
                format_func=lambda pr: pr["name"],
                key="book_provider",
            )
            if provider and provider.get("avatar"):
                st.image(provider["avatar"]["url"], width=96)

        with col_b:
            day = st.date_input("Day", value=date.today() + timedelta(days=1), key="book_day")
            hour = st.time_input("Hour", value=datetime.now().time().replace(minute=0, second=0, microsecond=0), key="book_hour")
            st.caption("Appointments start on the hour: minutes are dropped.")

        if st.button("Book", key="book_submit", disabled=not bool(providers)):
            payload = {"provider_id": provider["id"], "date": datetime.combine(day, hour).isoformat()}
            try:
                res = api_post("/api/appointments", payload, token=token)
                st.success(f"Appointment {res['id']} booked for {res['date']}.")
            except PermissionError as ex:
                st.session_state["auth_error"] = str(ex)
                st.error("Session not valid. Log out and log in again.")
            except (requests.RequestException, ApiError) as ex:
                st.error(str(ex))



# TAB 2 - My appointments

with tab2:
    st.subheader("Upcoming appointments")

    token = require_auth()
    if token:
        page = st.number_input("Page", min_value=1, value=1, step=1, key="apps_page")
        try:
            items = api_get("/api/appointments", token=token, params={"page": int(page)})
            if not items:
                st.info("No appointments.")
            for a in items:
                c1, c2 = st.columns([4, 1])
                c1.write(f"**{a['date']}** with {a['provider']['name']}" + (" (past)" if a["past"] else ""))
                if c2.button("Cancel", key=f"cancel_{a['id']}", disabled=not a["cancelable"]):
                    try:
                        api_delete(f"/api/appointments/{a['id']}", token=token)
                        st.success("Appointment canceled.")
                        st.rerun()
                    except ApiError as ex:
                        st.error(str(ex))
        except PermissionError as ex:
            st.session_state["auth_error"] = str(ex)
            st.error("Session not valid. Log out and log in again.")
        except (requests.RequestException, ApiError) as ex:
            st.error(f"Error loading appointments: {ex}")



# TAB 3 - Notifications

with tab3:
    st.subheader("Notifications")

    token = require_auth()
    if token:
        unread = st.checkbox("Only unread", value=True, key="notif_unread")
        try:
            items = api_get("/api/notifications", token=token, params={"unread": unread, "limit": 50})
            if not items:
                st.info("No notifications.")
            for n in items:
                c1, c2 = st.columns([4, 1])
                c1.write(f"[{n['id']}] {n['created_at']} - {n['content']}")
                if not n["read"] and c2.button("Mark read", key=f"read_{n['id']}"):
                    api_put(f"/api/notifications/{n['id']}", token=token)
                    st.rerun()
        except PermissionError as ex:
            st.session_state["auth_error"] = str(ex)
            st.error("Session not valid. Log out and log in again.")
        except (requests.RequestException, ApiError) as ex:
            st.error(f"Error loading notifications: {ex}")
