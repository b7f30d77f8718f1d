from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from .errors import DuplicateKey, NotFound
from .models import User, UserType


async def get_user(db, email: str) -> User | None:
    # counters are bumped with SQL-side increments, so always refresh from the row
    res = await db.execute(
        select(User)
        .where(User.email == email)
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def get_client(db, email: str) -> User:
    user = await get_user(db, email)
    if not user or user.user_type != UserType.CLIENT:
        raise NotFound("Client profile not found")
    return user


async def get_cleaner(db, email: str) -> User:
    user = await get_user(db, email)
    if not user or user.user_type != UserType.CLEANER:
        raise NotFound("Cleaner profile not found")
    return user


async def find_available_cleaner(db, email: str) -> User | None:
    res = await db.execute(
        select(User).where(
            User.email == email,
            User.user_type == UserType.CLEANER,
            User.is_available.is_(True),
        )
    )
    return res.scalar_one_or_none()


async def list_available_cleaners(db, limit: int = 20) -> list[User]:
    res = await db.execute(
        select(User)
        .where(User.user_type == UserType.CLEANER, User.is_available.is_(True))
        .order_by(User.rating.desc(), User.completed_jobs.desc())
        .limit(limit)
    )
    return list(res.scalars().all())


async def create_user(db, *, email: str, **fields) -> User:
    if await get_user(db, email):
        raise DuplicateKey("User already exists")

    user = User(email=email, **fields)
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        # lost a race against another registration with the same email
        await db.rollback()
        raise DuplicateKey("User already exists")
    return user


async def set_availability(db, email: str, is_available: bool) -> User:
    user = await get_cleaner(db, email)
    user.is_available = is_available
    await db.commit()
    return user


async def increment_client_bookings(db, email: str):
    await db.execute(
        update(User)
        .where(User.email == email)
        .values(bookings_count=User.bookings_count + 1)
        .execution_options(synchronize_session=False)
    )


async def increment_completed_jobs(db, email: str):
    await db.execute(
        update(User)
        .where(User.email == email)
        .values(completed_jobs=User.completed_jobs + 1)
        .execution_options(synchronize_session=False)
    )
