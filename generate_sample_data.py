import random
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta
from werkzeug.security import generate_password_hash

from pocket_pilot import create_app
from pocket_pilot.api.categories import seed_default_categories
from pocket_pilot.db import insert_row

EXPENSES = [
    ("Loblaws", "Food & Dining", 40, 180),
    ("Tim Hortons", "Food & Dining", 3, 15),
    ("Petro Canada", "Transportation", 45, 90),
    ("Amazon", "Shopping", 15, 120),
    ("Cineplex", "Entertainment", 12, 40),
    ("Shoppers Drug Mart", "Personal Care", 8, 60),
]


def main():
    app = create_app()
    with app.app_context():
        app.init_db()
        db = app.get_db()

        user_id = insert_row(db, "users", {"username": "demo", "password_hash": generate_password_hash("demo123")})
        seed_default_categories(db, user_id)
        categories = {
            row["name"]: row["id"]
            for row in db.execute("SELECT id, name FROM categories WHERE user_id = ?", (user_id,)).fetchall()
        }
        checking = insert_row(db, "accounts", {"user_id": user_id, "name": "Chequing", "type": "Checking"})
        insert_row(db, "accounts", {"user_id": user_id, "name": "Savings", "type": "Savings"})

        today = date.today()
        start = today - timedelta(days=90)
        for i in range(45):
            merchant, category, low, high = random.choice(EXPENSES)
            insert_row(
                db,
                "transactions",
                {
                    "user_id": user_id,
                    "account_id": checking,
                    "category_id": categories[category],
                    "date": (start + timedelta(days=i * 2)).isoformat(),
                    "amount": -round(random.uniform(low, high), 2),
                    "description": merchant,
                },
            )

        for months_back in range(3, 0, -1):
            month_start = today.replace(day=1) - relativedelta(months=months_back)
            insert_row(
                db,
                "transactions",
                {
                    "user_id": user_id,
                    "account_id": checking,
                    "category_id": categories["Income"],
                    "date": (month_start + timedelta(days=14)).isoformat(),
                    "amount": 3200.0,
                    "description": "Payroll deposit",
                },
            )
            insert_row(
                db,
                "transactions",
                {
                    "user_id": user_id,
                    "account_id": checking,
                    "category_id": categories["Utilities"],
                    "date": (month_start + timedelta(days=2)).isoformat(),
                    "amount": -89.99,
                    "description": "Rogers Wireless",
                },
            )

        insert_row(
            db,
            "budgets",
            {"user_id": user_id, "category_id": categories["Food & Dining"], "amount": 600.0, "period": "MONTHLY"},
        )
        insert_row(
            db,
            "bills",
            {
                "user_id": user_id,
                "name": "Hydro One",
                "amount": 120.0,
                "frequency": "monthly",
                "next_due_date": (today + timedelta(days=5)).isoformat(),
                "bill_type": "utilities",
            },
        )
        insert_row(
            db,
            "goals",
            {
                "user_id": user_id,
                "name": "Emergency fund",
                "target_amount": 10000.0,
                "current_amount": 2500.0,
                "category": "emergency",
                "auto_contribute_amount": 250.0,
                "auto_contribute_day": 15,
            },
        )

        db.commit()
    print("Sample data generated. Login with demo / demo123")


if __name__ == "__main__":
    main()
