import logging

import pandas as pd
import streamlit as st

from mafifulus import storage
from mafifulus.advisor import AdvisorUnavailable, ask_by_voice, build_system_instruction
from mafifulus.dashboard import cash_flow_sankey, cat_spend, income_vs_expense_monthly, spending_bar, summarize
from mafifulus.export import CSV_FILENAME, CSV_MEDIA_TYPE, EXCEL_FILENAME, EXCEL_MEDIA_TYPE, export_csv, export_excel
from mafifulus.extraction import ExtractionError, is_pdf, parse_bank_statement
from mafifulus.insights import add_objective, advice_cards, compute_ratios, generate_insights, objective_progress
from mafifulus.repository import InviteCodeError, get_store
from mafifulus.review import CATEGORIES, ReviewTable, editor_updates

logger = logging.getLogger(__name__)

# --- Configuration ---
st.set_page_config(page_title="Mafifulus", layout="wide", page_icon="💰")

SORT_LABELS = {"date_val": "Date", "description": "Description", "category": "Category", "amount": "Amount"}


def init_state():
    defaults = {
        "authenticated": False,
        "user": None,
        "stage": "upload",
        "review": None,
        "objectives": [],
        "editor_version": 0,
        "voice_reply": None,
    }
    for key, value in defaults.items():
        st.session_state.setdefault(key, value)


# --- Authentication ---
def check_login():
    """Phone + invite code login. Returns True once a user is signed in."""
    if st.session_state["authenticated"]:
        return True

    st.title("💰 Mafifulus")
    st.caption("Turn a bank statement into a financial plan.")

    with st.form("login"):
        phone = st.text_input("Phone Number", placeholder="+971 50 000 0000")
        name = st.text_input("Your Name")
        invite = st.text_input("Invite Code", type="password", help="Only needed the first time you sign in.")
        submitted = st.form_submit_button("Continue", use_container_width=True)

    if submitted:
        if not phone:
            st.error("Phone number required")
            return False
        try:
            user = get_store().login(phone, name or None, invite or None)
        except InviteCodeError as e:
            st.error(str(e))
            return False
        except Exception as e:
            logger.exception("Login Error")
            st.error(f"Login failed: {e}")
            return False

        st.session_state["authenticated"] = True
        st.session_state["user"] = user
        st.rerun()
    return False


def current_transactions():
    review = st.session_state["review"]
    return review.transactions if review else []


# --- Upload ---
def render_upload():
    st.header("📄 Upload Bank Statement")
    st.markdown("Upload a PDF statement. Transactions are extracted automatically for you to review.")

    uploaded = st.file_uploader("Bank statement (PDF)", type=["pdf"])
    if uploaded is None:
        return

    data = uploaded.getvalue()
    if not is_pdf(uploaded.type, data):
        st.error("Please upload a PDF file.")
        return

    if st.button("Analyze Statement", type="primary"):
        file_id = storage.new_file_id()
        storage.save_file(f"{file_id}.pdf", data)

        with st.spinner("Reading your statement..."):
            try:
                transactions = parse_bank_statement(data)
            except ExtractionError as e:
                st.error(f"Failed to analyze document. Ensure it is a valid bank statement. ({e})")
                return

        if not transactions:
            st.error("No transactions found or could not parse PDF.")
            return

        st.session_state["review"] = ReviewTable(transactions)
        st.session_state["stage"] = "review"
        st.rerun()


# --- Review ---
def apply_edits(rows, changes):
    review = st.session_state["review"]
    for idx, change in changes.items():
        txn_id = rows[int(idx)]["id"]
        if change.get("Remove"):
            review.delete(txn_id)
            continue
        updates = editor_updates(change)
        if updates:
            review.update(txn_id, updates)


def render_review():
    review = st.session_state["review"]
    st.header("🧾 Review Transactions")

    if any(t.get("isDemo") for t in review.transactions):
        st.warning(f"Showing demo data. {review.transactions[0].get('debugError') or ''}")

    col1, col2, col3 = st.columns([3, 2, 1])
    with col1:
        search = st.text_input("Search", placeholder="Description, category or date")
    with col2:
        category = st.selectbox("Category", ["All"] + CATEGORIES)
    with col3:
        view = st.radio("View", ["Table", "By Day"], horizontal=True)

    sort_cols = st.columns(len(SORT_LABELS) + 1)
    for col, (key, label) in zip(sort_cols, SORT_LABELS.items()):
        arrow = ""
        if review.sort_key == key:
            arrow = " ↑" if review.direction == "asc" else " ↓"
        if col.button(f"{label}{arrow}", key=f"sort_{key}", use_container_width=True):
            review.request_sort(key)
            st.rerun()
    if sort_cols[-1].button("↩️ Undo", disabled=not review.can_undo, use_container_width=True):
        review.undo()
        st.session_state["editor_version"] += 1
        st.rerun()

    rows = review.filtered(text=search, category=category)

    if not rows:
        st.info("No transactions match your filters.")
    elif view == "Table":
        table = pd.DataFrame(
            [
                {
                    "Date": t.get("date"),
                    "Description": t.get("description"),
                    "Category": t.get("category"),
                    "Amount": t.get("amount"),
                    "Currency": t.get("currency") or "AED",
                    "Remove": False,
                }
                for t in rows
            ]
        )
        editor_key = f"review_editor_{st.session_state['editor_version']}"
        st.data_editor(
            table,
            key=editor_key,
            disabled=["Date", "Currency"],
            hide_index=True,
            use_container_width=True,
            column_config={
                "Category": st.column_config.SelectboxColumn("Category", options=CATEGORIES),
                "Amount": st.column_config.NumberColumn("Amount", format="%.2f"),
                "Remove": st.column_config.CheckboxColumn("Remove"),
            },
        )
        changes = st.session_state.get(editor_key, {}).get("edited_rows", {})
        if changes:
            apply_edits(rows, changes)
            st.session_state["editor_version"] += 1
            st.rerun()
    else:
        for day, items in review.grouped(text=search, category=category).items():
            st.subheader(day)
            for t in items:
                c1, c2, c3, c4 = st.columns([4, 2, 2, 1])
                c1.write(t.get("description"))
                c2.caption(t.get("category"))
                color = "green" if float(t.get("amount") or 0) > 0 else "red"
                c3.markdown(f":{color}[{float(t.get('amount') or 0):,.2f} {t.get('currency') or 'AED'}]")
                if c4.button("🗑️", key=f"del_{t['id']}"):
                    review.delete(t["id"])
                    st.session_state["editor_version"] += 1
                    st.rerun()

    st.divider()
    d1, d2, d3 = st.columns(3)
    d1.download_button(
        "⬇️ CSV", export_csv(review.transactions), file_name=CSV_FILENAME,
        mime=CSV_MEDIA_TYPE, use_container_width=True,
    )
    d2.download_button(
        "⬇️ Excel", export_excel(review.transactions), file_name=EXCEL_FILENAME,
        mime=EXCEL_MEDIA_TYPE, use_container_width=True,
    )
    if d3.button("✅ Confirm & Continue", type="primary", use_container_width=True):
        confirm_transactions(review.transactions)


def confirm_transactions(transactions):
    user = st.session_state["user"] or {}
    try:
        count = get_store().save_transactions(user.get("id"), transactions)
        st.success(f"Saved {count} transactions.")
    except Exception as e:
        logger.exception("Save Transactions Error")
        st.warning(f"Could not save to the database, continuing with local data. ({e})")
    st.session_state["stage"] = "dashboard"
    st.rerun()


# --- Dashboard ---
def render_dashboard():
    transactions = current_transactions()
    summary = summarize(transactions)
    ratios = compute_ratios(transactions, summary)
    objectives = st.session_state["objectives"]

    tab1, tab2, tab3, tab4, tab5 = st.tabs(["📊 Dashboard", "📑 Reports", "🎯 Goals", "📈 Investments", "🎙️ Merrit AI"])

    with tab1:
        c1, c2, c3, c4 = st.columns(4)
        c1.metric("Income", f"AED {summary['total_income']:,.0f}")
        c2.metric("Expenses", f"AED {summary['total_expenses']:,.0f}")
        c3.metric("Net Savings", f"AED {summary['monthly_surplus']:,.0f}")
        c4.metric("Savings Rate", f"{summary['savings_rate']:.1f}%")
        if summary["sankey"]["links"]:
            st.plotly_chart(cash_flow_sankey(summary["sankey"]), use_container_width=True)
        else:
            st.info("Not enough data for a cash flow diagram.")

    with tab2:
        categories = summary["expense_categories"]
        col1, col2 = st.columns(2)
        with col1:
            st.plotly_chart(spending_bar(categories), use_container_width=True)
        with col2:
            st.plotly_chart(cat_spend(categories), use_container_width=True)
        st.plotly_chart(income_vs_expense_monthly(transactions), use_container_width=True)

        st.subheader("🔁 Recurring & Subscriptions")
        recurring = summary["recurring_expenses"]
        if recurring:
            st.dataframe(pd.DataFrame(recurring), use_container_width=True, hide_index=True)
            st.caption(f"Total monthly: AED {summary['total_monthly_recurring']:,.2f}")
        else:
            st.caption("No subscriptions detected.")

        st.subheader("🏪 Top Vendors")
        for group in summary["vendors_by_category"]:
            with st.expander(f"{group['category']} · AED {group['total']:,.0f}"):
                for v in group["vendors"]:
                    st.write(f"{v['name']}: AED {v['amount']:,.2f} ({v['percentage']}%)")

    with tab3:
        st.subheader("🎯 Life Objectives")
        with st.form("add_goal", clear_on_submit=True):
            g1, g2 = st.columns([3, 1])
            title = g1.text_input("Goal")
            cost = g2.number_input("Estimated Cost (AED)", min_value=0.0, step=1000.0)
            if st.form_submit_button("Add Goal"):
                st.session_state["objectives"] = add_objective(objectives, title, cost)
                st.rerun()
        for obj in objectives:
            progress = objective_progress(obj, summary["monthly_surplus"])
            st.write(f"**{progress['title']}** · AED {progress['estimated_cost']:,.0f}")
            st.progress(int(progress["projected_pct"]), text=progress["label"])

    with tab4:
        st.info("Investment tracking is coming soon.")

    with tab5:
        render_advisor(transactions, summary, ratios, objectives)


def render_advisor(transactions, summary, ratios, objectives):
    cols = st.columns(2)
    for col, card in zip(cols, advice_cards(summary)):
        with col:
            st.markdown(f"**{card['title']}**")
            st.write(card["body"])

    with st.expander("Key insights", expanded=True):
        for line in generate_insights(ratios, summary, objectives):
            st.markdown(f"- {line}")

    st.subheader("🎙️ Talk to Merrit")
    recording = st.audio_input("Ask Merrit a question")
    if recording is not None and st.button("Send to Merrit"):
        user = st.session_state["user"] or {}
        instruction = build_system_instruction(transactions, user.get("full_name") or "there", objectives)
        with st.spinner("Merrit is thinking..."):
            try:
                st.session_state["voice_reply"] = ask_by_voice(instruction, recording.getvalue())
            except AdvisorUnavailable as e:
                st.error(f"Voice advisor unavailable: {e}")
            except Exception as e:
                logger.exception("[Live] Voice request failed")
                st.error(f"Voice request failed: {e}")

    reply = st.session_state["voice_reply"]
    if reply:
        if reply["user_text"]:
            st.markdown(f"**You:** {reply['user_text']}")
        if reply["model_text"]:
            st.markdown(f"**Merrit:** {reply['model_text']}")
        if reply["audio"]:
            st.audio(reply["audio"], format="audio/wav")


# --- Main App ---
init_state()

if not check_login():
    st.stop()

user = st.session_state["user"]

with st.sidebar:
    st.header(f"👋 {user['full_name']}")
    if not get_store().persistent:
        st.caption("Running in mock mode. Data is kept in memory only.")

    st.divider()
    if st.session_state["review"] is not None:
        if st.button("🧾 Review", use_container_width=True):
            st.session_state["stage"] = "review"
            st.rerun()
        if st.button("📊 Dashboard", use_container_width=True):
            st.session_state["stage"] = "dashboard"
            st.rerun()
    if st.button("📄 New Statement", use_container_width=True):
        st.session_state["stage"] = "upload"
        st.rerun()

    st.divider()
    if st.button("🚪 Logout", use_container_width=True):
        for key in ("authenticated", "user", "stage", "review", "objectives", "voice_reply"):
            st.session_state.pop(key, None)
        st.rerun()

st.title("💰 Mafifulus")

stage = st.session_state["stage"]
if stage == "review" and st.session_state["review"] is not None:
    render_review()
elif stage == "dashboard" and st.session_state["review"] is not None:
    render_dashboard()
else:
    render_upload()
