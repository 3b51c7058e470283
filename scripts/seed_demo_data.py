"""
Seed a local database with a demo project, one user per role, plots and a
few qualification records.

Usage:
  python scripts/seed_demo_data.py

Safe to run more than once: users are matched on email and the project on
its code.
"""
import os
import sys
from datetime import date, timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from sitework.db import Base, SessionLocal, engine
from sitework.models.models import Project, User
from sitework.services import compliance, payroll, projects
from sitework.services.reference_data import seed_reference_data
from sitework.services.time_rules import local_today
from sitework.services.users import create_user

DEMO_PASSWORD = os.getenv("DEMO_PASSWORD", "password123")

DEMO_USERS = [
    ("admin@sitework.local", "Alex", "Admin", "admin"),
    ("director@sitework.local", "Dana", "Director", "director"),
    ("pm@sitework.local", "Priya", "Manager", "pm"),
    ("dpo@sitework.local", "Dev", "Protection", "dpo"),
    ("supervisor@sitework.local", "Sam", "Supervisor", "supervisor"),
    ("operative@sitework.local", "Ola", "Operative", "operative"),
]


def ensure_user(db, email: str, first_name: str, last_name: str, role: str) -> User:
    user = db.query(User).filter(User.email == email).first()
    if user:
        return user
    return create_user(db, None, {
        "email": email,
        "first_name": first_name,
        "last_name": last_name,
        "password": DEMO_PASSWORD,
        "role": role,
        "activation_status": "active",
    })


def main() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_reference_data(db)
        users = {role: ensure_user(db, email, first, last, role) for email, first, last, role in DEMO_USERS}
        admin = users["admin"]

        project = db.query(Project).filter(Project.code == "RSA").first()
        if project is None:
            project = projects.create_project(db, admin, {
                "name": "Riverside Block A",
                "code": "RSA",
                "client_name": "Riverside Homes",
                "address": "1 Wharf Road, Leeds",
                "start_date": date(2026, 1, 5),
            })
            for level in ("1", "2"):
                for n in range(1, 5):
                    projects.create_plot(db, admin, project, {"level": level, "plot_number": f"{level}0{n}"})
            for role in ("supervisor", "operative", "pm"):
                projects.add_member(db, admin, project, users[role])

            today = local_today()
            payroll.add_rate(db, admin, users["operative"], 190.0, 25.0, 0.0, today - timedelta(days=90))
            compliance.add_qualification(
                db, users["operative"], "cscs", "CSCS-000123", today - timedelta(days=700), today + timedelta(days=20)
            )
            compliance.add_qualification(
                db, users["supervisor"], "sssts", "SSSTS-4411", today - timedelta(days=400), today + timedelta(days=900)
            )
        print(f"Seeded demo data; sign in as any of {', '.join(u[0] for u in DEMO_USERS)}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
