"""Seed the default plans and the super admin account.

Usage:
    python -m api.scripts.setup [--with-sample-course]

Safe to run repeatedly: existing plans (by tier), the admin user (by
email) and the sample course (by code) are left untouched.
"""

import argparse
import logging
import os

from dotenv import load_dotenv

load_dotenv()

from ..auth import hash_password  # noqa: E402
from ..database import Course, CourseMaterial, Plan, User, get_db, init_database  # noqa: E402

logger = logging.getLogger(__name__)

DEFAULT_PLANS = [
    {
        "tier": "FREE",
        "name": "Free Plan",
        "description": "Perfect for trying out the platform",
        "price": 0,
        "max_papers_per_month": 1,
        "max_variants": 1,
        "include_answers": False,
        "features": ["Basic paper generation", "Standard grading", "Email support"],
    },
    {
        "tier": "MEDIUM",
        "name": "Medium Plan",
        "description": "Great for individual teachers",
        "price": 19,
        "max_papers_per_month": 5,
        "max_variants": 3,
        "include_answers": True,
        "features": [
            "Advanced paper generation",
            "Detailed grading with feedback",
            "Multiple paper variants",
            "Priority support",
        ],
    },
    {
        "tier": "PRO",
        "name": "Pro Plan",
        "description": "Perfect for institutions and teams",
        "price": 49,
        "max_papers_per_month": -1,
        "max_variants": 5,
        "include_answers": True,
        "features": [
            "Unlimited papers",
            "Premium AI models",
            "Advanced analytics",
            "Custom branding",
            "API access",
            "Dedicated support",
        ],
    },
]

ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@tatpaper.com")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "admin123")

SAMPLE_COURSE = {
    "name": "Introduction to Computer Science",
    "description": (
        "A comprehensive introduction to computer science concepts, programming "
        "fundamentals, and problem-solving techniques."
    ),
    "code": "CS101",
    "credits": 3,
    "level": "Undergraduate",
    "board_or_university": "Sample University",
    "language": "English",
}

SAMPLE_MATERIALS = [
    {
        "title": "Course Syllabus",
        "description": "Complete course syllabus with learning objectives",
        "type": "SYLLABUS",
        "content": (
            "This course covers fundamental computer science concepts including algorithms, "
            "data structures, programming paradigms, and software engineering principles. "
            "Students will learn to think computationally and solve problems using programming."
        ),
        "weightings": {"algorithms": 30, "data_structures": 25, "programming": 35, "software_engineering": 10},
        "style_notes": "Focus on practical applications and hands-on programming exercises.",
    },
    {
        "title": "Sample Midterm Paper 2023",
        "description": "Previous year midterm examination paper",
        "type": "OLD_PAPER",
        "content": (
            "Section A: Multiple Choice Questions (20 marks)\n"
            "1. What is the time complexity of binary search?\n"
            "2. Which data structure uses LIFO principle?\n\n"
            "Section B: Short Answer Questions (30 marks)\n"
            "3. Explain the concept of recursion with an example.\n"
            "4. Differentiate between stack and queue.\n\n"
            "Section C: Programming Questions (50 marks)\n"
            "5. Write a program to implement binary search.\n"
            "6. Create a class for a linked list with basic operations."
        ),
        "year": 2023,
        "weightings": {"algorithms": 40, "data_structures": 35, "programming": 25},
        "style_notes": "Three sections with increasing difficulty. Programming questions require code implementation.",
    },
]


def seed_plans(db) -> int:
    created = 0
    for plan_data in DEFAULT_PLANS:
        if db.query(Plan).filter_by(tier=plan_data["tier"]).first():
            print(f"{plan_data['name']} already exists")
            continue
        db.add(Plan(**plan_data))
        created += 1
        print(f"Created {plan_data['name']}")
    db.commit()
    return created


def seed_admin(db) -> User:
    admin = db.query(User).filter_by(email=ADMIN_EMAIL).first()
    if admin:
        print("Super admin user already exists")
        return admin

    admin = User(
        name="Super Admin",
        email=ADMIN_EMAIL,
        password_hash=hash_password(ADMIN_PASSWORD),
        role="SUPER_ADMIN",
    )
    db.add(admin)
    db.commit()
    print(f"Created super admin user: {ADMIN_EMAIL}")
    print("Please change the password after first login!")
    return admin


def seed_sample_course(db, admin: User) -> Course:
    course = db.query(Course).filter_by(code=SAMPLE_COURSE["code"]).first()
    if course:
        print(f"Sample course {course.code} already exists")
        return course

    course = Course(**SAMPLE_COURSE, created_by_id=admin.id)
    db.add(course)
    db.flush()
    for material_data in SAMPLE_MATERIALS:
        db.add(CourseMaterial(**material_data, course_id=course.id, uploaded_by_id=admin.id))
    db.commit()
    print(f"Created sample course: {course.name}")
    return course


def main(argv=None):
    parser = argparse.ArgumentParser(description="Seed PaperSmith plans and the super admin user")
    parser.add_argument(
        "--with-sample-course",
        action="store_true",
        help="also create the CS101 sample course with two materials",
    )
    args = parser.parse_args(argv)

    init_database()
    with get_db() as db:
        seed_plans(db)
        admin = seed_admin(db)
        if args.with_sample_course:
            seed_sample_course(db, admin)

    print("Setup completed successfully!")
    print("Next: run `python -m api.scripts.setup_qdrant` to index course materials.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    main()
