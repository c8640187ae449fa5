import logging

from sqlmodel import Session, select

from .auth import hash_password
from .db import engine, init_db
from .models import Award, Family, Role, User

logger = logging.getLogger(__name__)

DEMO_FAMILY = "Demo Family"

DEMO_USERS = [
    ("parent", "parent@example.com", "Parent", Role.ADULT, "parent1234"),
    ("kid1", "kid1@example.com", "Kid One", Role.KID, "kid1234"),
    ("kid2", "kid2@example.com", "Kid Two", Role.KID, "kid1234"),
]

DEMO_AWARDS = [
    ("Bronze", "🥉", 5),
    ("Silver", "🥈", 15),
    ("Gold", "🥇", 30),
]


def seed_demo_family(session: Session) -> Family:
    family = session.exec(select(Family).where(Family.name == DEMO_FAMILY)).first()
    if not family:
        family = Family(name=DEMO_FAMILY)
        session.add(family)
        session.commit()
        session.refresh(family)

    for username, email, name, role, password in DEMO_USERS:
        user = session.exec(select(User).where(User.username == username)).first()
        if user and user.family_id != family.id:
            logger.warning("username %s belongs to another family, skipping", username)
            continue
        if not user:
            user = User(family_id=family.id, username=username, hashed_password="")
        user.email = email
        user.name = name
        user.role = role
        user.is_active = True
        user.hashed_password = hash_password(password)
        session.add(user)

    existing = set(
        session.exec(select(Award.name).where(Award.family_id == family.id)).all()
    )
    for name, icon, threshold in DEMO_AWARDS:
        if name not in existing:
            session.add(
                Award(family_id=family.id, name=name, icon=icon, threshold_points=threshold)
            )
    session.commit()
    logger.info("seeded demo family %s", family.id)
    return family


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
    with Session(engine) as session:
        seed_demo_family(session)
