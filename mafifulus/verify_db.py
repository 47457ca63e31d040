from mafifulus.database import check_connection, init_db
from mafifulus.repository import SqlStore


def verify_db():
    print("Checking database connection...")
    if not check_connection():
        print("Could not connect. Check DATABASE_URL in .env.")
        return False
    # Creates any missing tables
    init_db()
    print(f"Connected. Users: {SqlStore().count_users()}")
    return True


if __name__ == "__main__":
    raise SystemExit(0 if verify_db() else 1)
