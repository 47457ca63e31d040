from mafifulus.database import init_db
from mafifulus.extraction import generate_demo_transactions
from mafifulus.repository import SqlStore, invite_code

DEMO_PHONE = "+971500000000"


def seed_demo_user():
    init_db()
    store = SqlStore()

    if store.count_users():
        print("Users already exist. Skipping seed.")
        return

    user = store.login(DEMO_PHONE, name="Demo User", invite=invite_code())
    rows = [
        {k: v for k, v in t.items() if k not in ("isDemo", "debugError")}
        for t in generate_demo_transactions()
    ]
    count = store.save_transactions(user["id"], rows)
    print(f"Database initialized with demo user {DEMO_PHONE} and {count} transactions.")


if __name__ == "__main__":
    seed_demo_user()
