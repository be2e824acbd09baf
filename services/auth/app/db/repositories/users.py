from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Protocol

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from libs.common.sql import SQLRepositoryBase, dump_json, in_clause, load_json, set_clause, utc
from libs.common.timezone import now_utc
from libs.schemas import OnboardingProgress, User, UserRole

from services.auth.app.db.session import SessionLocal


class UserRepositoryPort(Protocol):
    async def find_by_id(self, user_id: int) -> User | None: ...

    async def find_by_ids(self, user_ids: Iterable[int]) -> Dict[int, User]: ...

    async def find_by_email(self, email: str) -> User | None: ...

    async def find_by_verification_token(self, token: str) -> User | None: ...

    async def find_by_reset_token(self, token: str) -> User | None: ...

    async def find_by_referral_code(self, code: str) -> User | None: ...

    async def create_user(
        self,
        public_id: str,
        email: str,
        password_hash: str,
        first_name: str,
        last_name: str,
        role: UserRole,
        verification_token: str,
        verification_expires_at: datetime,
        referral_code: str,
        referred_by: int | None = None,
    ) -> User | None: ...

    async def update_fields(self, user_id: int, fields: Dict[str, Any]) -> User | None: ...

    async def add_credits(self, user_id: int, amount: int) -> None: ...


_COLUMNS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "personalEmail": "personal_email",
    "phoneNumber": "phone_number",
    "role": "role",
    "passwordHash": "password_hash",
    "emailVerified": "email_verified",
    "verificationToken": "verification_token",
    "verificationExpiresAt": "verification_expires_at",
    "resetPasswordToken": "reset_password_token",
    "resetPasswordExpiresAt": "reset_password_expires_at",
    "referralCode": "referral_code",
    "referredBy": "referred_by",
    "onboardingProgress": "onboarding_progress",
    "updatedAt": "updated_at",
}

_SELECT = """
    SELECT user_id, public_id, email, password_hash, first_name, last_name,
           personal_email, phone_number, role, email_verified,
           verification_token, verification_expires_at,
           reset_password_token, reset_password_expires_at,
           referral_code, referred_by, account_credits,
           onboarding_progress, created_at
    FROM users
"""


def _to_user(row) -> User:
    return User(
        userId=row["user_id"],
        publicId=row["public_id"],
        email=row["email"],
        passwordHash=row["password_hash"],
        firstName=row["first_name"],
        lastName=row["last_name"],
        personalEmail=row["personal_email"],
        phoneNumber=row["phone_number"],
        role=row["role"],
        emailVerified=bool(row["email_verified"]),
        verificationToken=row["verification_token"],
        verificationExpiresAt=utc(row["verification_expires_at"]),
        resetPasswordToken=row["reset_password_token"],
        resetPasswordExpiresAt=utc(row["reset_password_expires_at"]),
        referralCode=row["referral_code"],
        referredBy=row["referred_by"],
        accountCredits=row["account_credits"] or 0,
        onboardingProgress=OnboardingProgress(**load_json(row["onboarding_progress"], {})),
        createdAt=utc(row["created_at"]),
    )


class SQLAlchemyUserRepository(SQLRepositoryBase):
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        super().__init__(session_factory)

    async def _find_one(self, where: str, params: dict) -> User | None:
        def _query():
            with self._session_factory() as session:
                row = session.execute(text(f"{_SELECT} WHERE {where} LIMIT 1"), params).mappings().first()
                return _to_user(row) if row else None

        return await self._run_in_thread(_query)

    async def find_by_id(self, user_id: int) -> User | None:
        return await self._find_one("user_id = :user_id", {"user_id": user_id})

    async def find_by_ids(self, user_ids: Iterable[int]) -> Dict[int, User]:
        user_ids = list(set(user_ids))
        if not user_ids:
            return {}
        placeholders, params = in_clause("u", user_ids)

        def _query():
            with self._session_factory() as session:
                rows = session.execute(text(f"{_SELECT} WHERE user_id IN ({placeholders})"), params).mappings().all()
                return {row["user_id"]: _to_user(row) for row in rows}

        return await self._run_in_thread(_query)

    async def find_by_email(self, email: str) -> User | None:
        return await self._find_one("email = :email", {"email": email.lower()})

    async def find_by_verification_token(self, token: str) -> User | None:
        return await self._find_one("verification_token = :token", {"token": token})

    async def find_by_reset_token(self, token: str) -> User | None:
        return await self._find_one("reset_password_token = :token", {"token": token})

    async def find_by_referral_code(self, code: str) -> User | None:
        return await self._find_one("referral_code = :code", {"code": code.upper()})

    async def create_user(
        self,
        public_id: str,
        email: str,
        password_hash: str,
        first_name: str,
        last_name: str,
        role: UserRole,
        verification_token: str,
        verification_expires_at: datetime,
        referral_code: str,
        referred_by: int | None = None,
    ) -> User | None:
        """
        Insert a user.

        Returns:
            the created user, or None when a unique key (email, public id or
            referral code) is already taken
        """
        params = {
            "public_id": public_id,
            "email": email.lower(),
            "password_hash": password_hash,
            "first_name": first_name,
            "last_name": last_name,
            "role": role.value,
            "verification_token": verification_token,
            "verification_expires_at": verification_expires_at,
            "referral_code": referral_code,
            "referred_by": referred_by,
            "onboarding_progress": dump_json(OnboardingProgress().model_dump(mode="json")),
            "created_at": now_utc(),
        }

        def _insert():
            with self._session_factory() as session:
                try:
                    result = session.execute(
                        text(
                            """
                            INSERT INTO users (
                                public_id, email, password_hash, first_name, last_name, role,
                                email_verified, verification_token, verification_expires_at,
                                referral_code, referred_by, account_credits,
                                onboarding_progress, created_at
                            ) VALUES (
                                :public_id, :email, :password_hash, :first_name, :last_name, :role,
                                0, :verification_token, :verification_expires_at,
                                :referral_code, :referred_by, 0,
                                :onboarding_progress, :created_at
                            )
                            """
                        ),
                        params,
                    )
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    return None
                return result.lastrowid

        user_id = await self._run_in_thread(_insert)
        if user_id is None:
            return None
        return await self.find_by_id(user_id)

    async def update_fields(self, user_id: int, fields: Dict[str, Any]) -> User | None:
        if fields:
            fields = dict(fields)
            if isinstance(fields.get("onboardingProgress"), OnboardingProgress):
                fields["onboardingProgress"] = dump_json(fields["onboardingProgress"].model_dump(mode="json"))
            fields["updatedAt"] = now_utc()
            clause, params = set_clause(fields, _COLUMNS)
            params["user_id"] = user_id

            def _update():
                with self._session_factory() as session:
                    session.execute(text(f"UPDATE users SET {clause} WHERE user_id = :user_id"), params)
                    session.commit()

            await self._run_in_thread(_update)
        return await self.find_by_id(user_id)

    async def add_credits(self, user_id: int, amount: int) -> None:
        def _update():
            with self._session_factory() as session:
                session.execute(
                    text(
                        """
                        UPDATE users
                        SET account_credits = account_credits + :amount
                        WHERE user_id = :user_id
                        """
                    ),
                    {"user_id": user_id, "amount": amount},
                )
                session.commit()

        await self._run_in_thread(_update)
