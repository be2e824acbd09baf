from typing import Any, Callable, Dict, List, Protocol

from sqlalchemy import text
from sqlalchemy.orm import Session

from libs.common.sql import SQLRepositoryBase, in_clause, set_clause, to_float, utc
from libs.common.timezone import now_utc
from libs.schemas import BusinessMetrics, Merchant, MerchantLocation, MerchantStatus

from services.merchant.app.db.session import SessionLocal


class MerchantRepositoryPort(Protocol):
    async def find_by_id(self, merchant_id: int) -> Merchant | None: ...

    async def find_by_user_id(self, user_id: int) -> Merchant | None: ...

    async def find_by_stripe_customer(self, customer_id: str) -> Merchant | None: ...

    async def find_by_contact_email(self, email: str) -> Merchant | None: ...

    async def create_merchant(self, user_id: int, business_name: str, slug: str, contact_email: str) -> Merchant: ...

    async def update_fields(self, merchant_id: int, fields: Dict[str, Any]) -> Merchant | None: ...

    async def save_primary_location(self, merchant_id: int, location: MerchantLocation) -> Merchant | None: ...

    async def list_active(self, search: str | None = None) -> List[Merchant]: ...

    async def list_by_status(self, status: MerchantStatus | None) -> List[Merchant]: ...

    async def list_onboarded_active(self) -> List[Merchant]: ...


_COLUMNS = {
    "businessName": "business_name",
    "slug": "slug",
    "description": "description",
    "logo": "logo",
    "contactEmail": "contact_email",
    "contactPhone": "contact_phone",
    "website": "website",
    "status": "status",
    "verifiedAt": "verified_at",
    "avgOrderValue": "avg_order_value",
    "priceTier": "price_tier",
    "seatingCapacity": "seating_capacity",
    "cateringAvailable": "catering_available",
    "offersDelivery": "offers_delivery",
    "stripeCustomerId": "stripe_customer_id",
    "stripeSubscriptionId": "stripe_subscription_id",
    "subscriptionStatus": "subscription_status",
    "subscriptionCurrentPeriodEnd": "subscription_current_period_end",
    "subscriptionTrialEnd": "subscription_trial_end",
    "subscriptionCancelAtPeriodEnd": "subscription_cancel_at_period_end",
    "onboardingCompleted": "onboarding_completed",
    "securityTermsAcceptedAt": "security_terms_accepted_at",
    "securityTermsVersion": "security_terms_version",
}

_SELECT = """
    SELECT merchant_id, user_id, business_name, slug, description, logo,
           contact_email, contact_phone, website, status, verified_at,
           avg_order_value, price_tier, seating_capacity, catering_available,
           offers_delivery, stripe_customer_id, stripe_subscription_id,
           subscription_status, subscription_current_period_end,
           subscription_trial_end, subscription_cancel_at_period_end,
           onboarding_completed, security_terms_accepted_at,
           security_terms_version, created_at
    FROM merchants
"""


def _to_location(row) -> MerchantLocation:
    return MerchantLocation(
        locationId=row["location_id"],
        address=row["address"],
        city=row["city"],
        state=row["state"],
        zipCode=row["zip_code"],
        country=row["country"],
        phone=row["phone"],
        latitude=row["latitude"],
        longitude=row["longitude"],
    )


def _to_merchant(row, locations: List[MerchantLocation]) -> Merchant:
    return Merchant(
        merchantId=row["merchant_id"],
        userId=row["user_id"],
        businessName=row["business_name"],
        slug=row["slug"],
        description=row["description"],
        logo=row["logo"],
        contactEmail=row["contact_email"],
        contactPhone=row["contact_phone"],
        website=row["website"],
        status=row["status"],
        verifiedAt=utc(row["verified_at"]),
        locations=locations,
        businessMetrics=BusinessMetrics(
            avgOrderValue=to_float(row["avg_order_value"]),
            priceTier=row["price_tier"],
            seatingCapacity=row["seating_capacity"],
            cateringAvailable=bool(row["catering_available"]),
            offersDelivery=bool(row["offers_delivery"]),
        ),
        stripeCustomerId=row["stripe_customer_id"],
        stripeSubscriptionId=row["stripe_subscription_id"],
        subscriptionStatus=row["subscription_status"],
        subscriptionCurrentPeriodEnd=utc(row["subscription_current_period_end"]),
        subscriptionTrialEnd=utc(row["subscription_trial_end"]),
        subscriptionCancelAtPeriodEnd=bool(row["subscription_cancel_at_period_end"]),
        onboardingCompleted=bool(row["onboarding_completed"]),
        securityTermsAcceptedAt=utc(row["security_terms_accepted_at"]),
        securityTermsVersion=row["security_terms_version"],
        createdAt=utc(row["created_at"]),
    )


class SQLAlchemyMerchantRepository(SQLRepositoryBase):
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        super().__init__(session_factory)

    @staticmethod
    def _load(session: Session, rows) -> List[Merchant]:
        if not rows:
            return []
        placeholders, params = in_clause("m", [row["merchant_id"] for row in rows])
        location_rows = (
            session.execute(
                text(
                    f"""
                    SELECT location_id, merchant_id, address, city, state, zip_code,
                           country, phone, latitude, longitude
                    FROM merchant_locations
                    WHERE merchant_id IN ({placeholders})
                    ORDER BY position, location_id
                    """
                ),
                params,
            )
            .mappings()
            .all()
        )
        by_merchant: Dict[int, List[MerchantLocation]] = {}
        for location in location_rows:
            by_merchant.setdefault(location["merchant_id"], []).append(_to_location(location))
        return [_to_merchant(row, by_merchant.get(row["merchant_id"], [])) for row in rows]

    async def _find_many(self, where: str, params: dict, order: str = "created_at DESC") -> List[Merchant]:
        def _query():
            with self._session_factory() as session:
                rows = session.execute(text(f"{_SELECT} WHERE {where} ORDER BY {order}"), params).mappings().all()
                return self._load(session, rows)

        return await self._run_in_thread(_query)

    async def _find_one(self, where: str, params: dict) -> Merchant | None:
        merchants = await self._find_many(where, params)
        return merchants[0] if merchants else None

    async def find_by_id(self, merchant_id: int) -> Merchant | None:
        return await self._find_one("merchant_id = :merchant_id", {"merchant_id": merchant_id})

    async def find_by_user_id(self, user_id: int) -> Merchant | None:
        return await self._find_one("user_id = :user_id", {"user_id": user_id})

    async def find_by_stripe_customer(self, customer_id: str) -> Merchant | None:
        return await self._find_one("stripe_customer_id = :customer_id", {"customer_id": customer_id})

    async def find_by_contact_email(self, email: str) -> Merchant | None:
        return await self._find_one("LOWER(contact_email) = :email", {"email": email.lower()})

    async def create_merchant(self, user_id: int, business_name: str, slug: str, contact_email: str) -> Merchant:
        def _insert():
            with self._session_factory() as session:
                result = session.execute(
                    text(
                        """
                        INSERT INTO merchants (
                            user_id, business_name, slug, contact_email, status,
                            subscription_status, created_at
                        ) VALUES (
                            :user_id, :business_name, :slug, :contact_email, 'PENDING',
                            'NONE', :created_at
                        )
                        """
                    ),
                    {
                        "user_id": user_id,
                        "business_name": business_name,
                        "slug": slug,
                        "contact_email": contact_email,
                        "created_at": now_utc(),
                    },
                )
                session.commit()
                return result.lastrowid

        merchant_id = await self._run_in_thread(_insert)
        return await self.find_by_id(merchant_id)

    async def update_fields(self, merchant_id: int, fields: Dict[str, Any]) -> Merchant | None:
        if fields:
            clause, params = set_clause(fields, _COLUMNS)
            params["merchant_id"] = merchant_id

            def _update():
                with self._session_factory() as session:
                    session.execute(text(f"UPDATE merchants SET {clause} WHERE merchant_id = :merchant_id"), params)
                    session.commit()

            await self._run_in_thread(_update)
        return await self.find_by_id(merchant_id)

    async def save_primary_location(self, merchant_id: int, location: MerchantLocation) -> Merchant | None:
        params = {
            "merchant_id": merchant_id,
            "address": location.address,
            "city": location.city,
            "state": location.state,
            "zip_code": location.zipCode,
            "country": location.country,
            "phone": location.phone,
            "latitude": location.latitude,
            "longitude": location.longitude,
        }

        def _save():
            with self._session_factory() as session:
                location_id = session.execute(
                    text(
                        """
                        SELECT location_id
                        FROM merchant_locations
                        WHERE merchant_id = :merchant_id
                        ORDER BY position, location_id
                        LIMIT 1
                        """
                    ),
                    {"merchant_id": merchant_id},
                ).scalar()
                if location_id is None:
                    session.execute(
                        text(
                            """
                            INSERT INTO merchant_locations (
                                merchant_id, position, address, city, state, zip_code,
                                country, phone, latitude, longitude
                            ) VALUES (
                                :merchant_id, 0, :address, :city, :state, :zip_code,
                                :country, :phone, :latitude, :longitude
                            )
                            """
                        ),
                        params,
                    )
                else:
                    session.execute(
                        text(
                            """
                            UPDATE merchant_locations
                            SET address = :address, city = :city, state = :state,
                                zip_code = :zip_code, country = :country, phone = :phone,
                                latitude = :latitude, longitude = :longitude
                            WHERE location_id = :location_id
                            """
                        ),
                        {**params, "location_id": location_id},
                    )
                session.commit()

        await self._run_in_thread(_save)
        return await self.find_by_id(merchant_id)

    async def list_active(self, search: str | None = None) -> List[Merchant]:
        where = "status = 'ACTIVE'"
        params: Dict[str, Any] = {}
        if search:
            where += " AND LOWER(business_name) LIKE :search"
            params["search"] = f"%{search.lower()}%"
        return await self._find_many(where, params, order="business_name")

    async def list_by_status(self, status: MerchantStatus | None) -> List[Merchant]:
        if status is None:
            return await self._find_many("1 = 1", {})
        return await self._find_many("status = :status", {"status": status.value})

    async def list_onboarded_active(self) -> List[Merchant]:
        return await self._find_many(
            "status = 'ACTIVE' AND onboarding_completed = 1 AND avg_order_value > 0",
            {},
            order="business_name",
        )
