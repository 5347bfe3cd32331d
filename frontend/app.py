import streamlit as st
import requests
import uuid
from datetime import date
from decimal import Decimal, InvalidOperation
import os
import time

# ── Config ────────────────────────────────────────────────────────────────────
API_BASE = os.getenv("API_BASE_URL", "http://localhost:8000")

st.set_page_config(
    page_title="Expense Tracker",
    page_icon="💸",
    layout="centered",
)

# ── Helpers ───────────────────────────────────────────────────────────────────

def _error_detail(resp: requests.Response) -> str:
    try:
        detail = resp.json().get("detail", resp.text)
    except ValueError:
        return resp.text
    if isinstance(detail, list):
        return "; ".join(err.get("msg", str(err)) for err in detail)
    return str(detail)


def post_expense(payload: dict) -> tuple[bool, str, dict | None]:
    """POST /expenses. Returns (success, message, data)."""
    try:
        resp = requests.post(f"{API_BASE}/expenses", json=payload, timeout=10)
        if resp.status_code == 201:
            return True, "Expense saved successfully!", resp.json()
        elif resp.status_code == 200:
            return True, "Expense was already saved.", resp.json()
        else:
            return False, f"API error {resp.status_code}: {_error_detail(resp)}", None
    except requests.exceptions.ConnectionError:
        return False, "Could not connect to the API. Please try again.", None
    except requests.exceptions.Timeout:
        return False, "Request timed out. Your expense may have been saved — please refresh before retrying.", None
    except requests.exceptions.RequestException as e:
        return False, f"Unexpected error: {str(e)}", None

MAX_RETRIES = 3

def post_expense_with_retry(payload: dict) -> tuple[bool, str, dict | None]:
    """
    Calls `post_expense` with retries and exponential backoff.
    Safe to repeat because every attempt carries the same idempotency key.
    """
    for attempt in range(MAX_RETRIES):
        success, message, data = post_expense(payload)
        if success or attempt == MAX_RETRIES - 1:
            return success, message, data
        # Exponential backoff: 1, 2, 4 seconds...
        time.sleep(2 ** attempt)


def fetch_expenses(category: str = "", sort: str = "date_desc") -> tuple[bool, str, list | None]:
    """GET /expenses. Returns (success, message, data)."""
    params = {"sort": sort}
    if category and category != "All":
        params["category"] = category
    try:
        resp = requests.get(f"{API_BASE}/expenses", params=params, timeout=10)
        if resp.status_code == 200:
            return True, "", resp.json()
        else:
            return False, f"API error {resp.status_code}: {resp.text}", None
    except requests.exceptions.ConnectionError:
        return False, "Could not connect to the API.", None
    except requests.exceptions.Timeout:
        return False, "Request timed out while loading expenses.", None
    except requests.exceptions.RequestException as e:
        return False, f"Unexpected error: {str(e)}", None


def fetch_categories() -> list[str]:
    """GET /expenses/categories."""
    try:
        resp = requests.get(f"{API_BASE}/expenses/categories", timeout=10)
        if resp.status_code == 200:
            return ["All"] + resp.json()
        return ["All"]
    except requests.exceptions.RequestException:
        return ["All"]


def put_expense(expense_id: int, payload: dict) -> tuple[bool, str]:
    """PUT /expenses/{id}. Returns (success, message)."""
    try:
        resp = requests.put(f"{API_BASE}/expenses/{expense_id}", json=payload, timeout=10)
        if resp.status_code == 200:
            return True, "Saved ✓"
        if resp.status_code == 404:
            return False, "This expense no longer exists."
        return False, f"API error {resp.status_code}: {_error_detail(resp)}"
    except requests.exceptions.RequestException as e:
        return False, f"Update failed: {str(e)}"


def delete_expense(expense_id: int) -> tuple[bool, str]:
    """DELETE /expenses/{id}. Returns (success, message)."""
    try:
        resp = requests.delete(f"{API_BASE}/expenses/{expense_id}", timeout=10)
        if resp.status_code in (204, 404):
            return True, "Expense deleted 🗑️"
        return False, f"API error {resp.status_code}: {_error_detail(resp)}"
    except requests.exceptions.RequestException as e:
        return False, f"Delete failed: {str(e)}"


def parse_amount(amount_str: str) -> tuple[Decimal | None, str | None]:
    """Returns (amount, error)."""
    try:
        amount_val = Decimal(amount_str.strip())
    except (InvalidOperation, AttributeError):
        return None, "Amount must be a valid number (e.g. 250 or 99.99)."
    if amount_val < 0:
        return None, "Amount cannot be negative."
    return amount_val, None


def format_inr(amount) -> str:
    try:
        return f"₹{Decimal(str(amount)):,.2f}"
    except (InvalidOperation, TypeError):
        return f"₹{amount}"


# ── Session state init ─────────────────────────────────────────────────────────
if "idempotency_key" not in st.session_state:
    st.session_state.idempotency_key = str(uuid.uuid4())

if "submit_result" not in st.session_state:
    st.session_state.submit_result = None # (success: bool, message: str)

if "submitting" not in st.session_state:
    st.session_state.submitting = False

if "editing_id" not in st.session_state:
    st.session_state.editing_id = None

# ── Page ───────────────────────────────────────────────────────────────────────
st.title("💸 Expense Tracker")
st.caption("Track your personal expenses. All amounts in ₹.")

st.divider()

# ── Section 1: Add Expense ─────────────────────────────────────────────────────
with st.expander("➕ Add New Expense", expanded=True):
    with st.form("add_expense_form", clear_on_submit=False):
        col1, col2 = st.columns(2)

        with col1:
            amount_str = st.text_input(
                "Amount (₹) *",
                placeholder="e.g. 499.00",
                help="Must not be negative.",
            )

        with col2:
            category = st.text_input(
                "Category *",
                placeholder="e.g. Food, Transport, Utilities",
                max_chars=100,
            )

        description = st.text_area(
            "Description",
            placeholder="Optional: what was this expense for?",
            max_chars=1000,
            height=80,
        )

        expense_date = st.date_input(
            "Date *",
            value=date.today(),
            max_value=date.today(),
        )

        submitted = st.form_submit_button("Save Expense", type="primary",
                use_container_width=True, disabled=st.session_state.submitting)

        if submitted:
            # ── Client-side validation ──
            st.session_state.submitting = True
            try:
                errors = []

                amount_val, amount_error = parse_amount(amount_str)
                if amount_error:
                    errors.append(amount_error)

                if not category.strip():
                    errors.append("Category is required.")

                if errors:
                    for err in errors:
                        st.error(err)
                else:
                    payload = {
                        "idempotency_key": st.session_state.idempotency_key,
                        "amount": str(amount_val),
                        "category": category.strip(),
                        "description": description.strip() or None,
                        "date": str(expense_date),
                    }

                    with st.spinner("Saving..."):
                        success, message, _ = post_expense_with_retry(payload)

                    st.session_state.submit_result = (success, message)
                    if success:
                        # Rotate key so next submission is a fresh expense
                        st.session_state.idempotency_key = str(uuid.uuid4())
                        st.rerun()
            finally:
                st.session_state.submitting = False

    # Show result outside the form so it persists after rerun
    if st.session_state.submit_result is not None:
        ok, msg = st.session_state.submit_result
        if ok:
            st.success(msg)
        else:
            st.error(msg)
        st.session_state.submit_result = None

st.divider()

# ── Section 2: Filters ─────────────────────────────────────────────────────────
st.subheader("📋 My Expenses")

col_f1, col_f2 = st.columns([2, 1])

with col_f1:
    categories = fetch_categories()
    selected_category = st.selectbox("Filter by Category", options=categories)

with col_f2:
    sort_order = st.selectbox("Sort by Date", options=["Newest First", "Oldest First"])

sort = "date_desc" if sort_order == "Newest First" else "date_asc"

# ── Section 3: Expense List ────────────────────────────────────────────────────
with st.spinner("Loading expenses..."):
    ok, err_msg, expenses = fetch_expenses(
        category=selected_category,
        sort=sort,
    )

if not ok:
    st.error(f"⚠️ {err_msg}")
elif not expenses:
    st.info("No expenses found for the selected filter.")
else:
    count = len(expenses)
    total = sum((Decimal(str(exp["amount"])) for exp in expenses), Decimal("0.00"))
    st.metric(
        label=f"Total ({count} expense{'s' if count != 1 else ''})",
        value=format_inr(total),
    )

    st.markdown("")

    for exp in expenses:
        with st.container(border=True):
            if st.session_state.editing_id == exp["id"]:
                with st.form(f"edit_expense_{exp['id']}"):
                    e1, e2 = st.columns(2)
                    with e1:
                        new_amount = st.text_input("Amount (₹)", value=str(exp["amount"]))
                    with e2:
                        new_category = st.text_input("Category", value=exp["category"], max_chars=100)
                    new_description = st.text_input("Description", value=exp.get("description") or "")
                    new_date = st.date_input("Date", value=date.fromisoformat(exp["date"]))

                    s1, s2 = st.columns(2)
                    save = s1.form_submit_button("Save", type="primary", use_container_width=True)
                    cancel = s2.form_submit_button("Cancel", use_container_width=True)

                    if cancel:
                        st.session_state.editing_id = None
                        st.rerun()
                    if save:
                        amount_val, amount_error = parse_amount(new_amount)
                        if amount_error:
                            st.error(amount_error)
                        elif not new_category.strip():
                            st.error("Category is required.")
                        else:
                            saved, message = put_expense(exp["id"], {
                                "amount": str(amount_val),
                                "category": new_category.strip(),
                                "description": new_description.strip() or None,
                                "date": str(new_date),
                            })
                            if saved:
                                st.session_state.editing_id = None
                                st.session_state.submit_result = (True, message)
                                st.rerun()
                            st.error(message)
            else:
                c1, c2, c3, c4 = st.columns([2, 1, 1, 1])
                with c1:
                    st.markdown(f"**{exp['category']}**")
                    if exp.get("description"):
                        st.caption(exp["description"])
                with c2:
                    st.markdown(f"**{format_inr(exp['amount'])}**")
                with c3:
                    st.caption(f"📅 {exp['date']}")
                with c4:
                    if st.button("Edit", key=f"edit_{exp['id']}", use_container_width=True):
                        st.session_state.editing_id = exp["id"]
                        st.rerun()
                    if st.button("Delete", key=f"delete_{exp['id']}", use_container_width=True):
                        deleted, message = delete_expense(exp["id"])
                        st.session_state.submit_result = (deleted, message)
                        st.rerun()
