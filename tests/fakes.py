"""In-memory stand-ins for the repository ports and external gateways."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Set, Tuple

from libs.common.mailer import EmailResult
from libs.common.timezone import ensure_utc, now_utc
from libs.schemas import (
    AdminPermissions,
    AdminRole,
    AdminStatus,
    AppealStatus,
    ClaimedCoupon,
    Company,
    CompanyAdmin,
    CompanyStatus,
    CouponStatus,
    CouponUsage,
    Discount,
    DiscountType,
    Employee,
    EmployeePass,
    EmployeeStatus,
    InviteCode,
    InviteStatus,
    Merchant,
    MerchantLocation,
    MerchantReferral,
    MerchantReferralStatus,
    MerchantStatus,
    ModerationAction,
    ModerationActionType,
    ModerationDuration,
    ModerationReason,
    ModerationTarget,
    PassStatus,
    Referral,
    ReferralStatus,
    User,
    UserRole,
    default_permissions,
)

from services.coupon.app.db.repositories.coupons import DuplicateClaimError


def _apply(model, fields: Dict[str, Any]):
    # re-validate so enum values passed as strings come back as enums
    return type(model).model_validate({**model.model_dump(), **fields})


def make_user(user_id: int = 1, email: str = "jane@acme.com", role: UserRole = UserRole.EMPLOYEE, **extra) -> User:
    data = {
        "userId": user_id,
        "publicId": f"CB-{user_id:06d}",
        "email": email,
        "firstName": "Jane",
        "lastName": "Doe",
        "role": role,
        "emailVerified": True,
    }
    data.update(extra)
    return User(**data)


def make_employee(employee_id: int = 10, user_id: int = 1, company_id: int = 100, **extra) -> Employee:
    data = {
        "employeeId": employee_id,
        "userId": user_id,
        "companyId": company_id,
        "firstName": "Jane",
        "lastName": "Doe",
        "status": EmployeeStatus.ACTIVE,
    }
    data.update(extra)
    return Employee(**data)


def make_company(company_id: int = 100, name: str = "Acme", **extra) -> Company:
    data = {"companyId": company_id, "name": name, "slug": name.lower(), "status": CompanyStatus.ACTIVE}
    data.update(extra)
    return Company(**data)


def make_merchant(merchant_id: int = 50, user_id: int = 5, **extra) -> Merchant:
    data = {
        "merchantId": merchant_id,
        "userId": user_id,
        "businessName": "Joe's Pizza",
        "slug": "joe-s-pizza",
        "contactEmail": "joe@joespizza.com",
        "status": MerchantStatus.ACTIVE,
    }
    data.update(extra)
    return Merchant(**data)


def make_discount(discount_id: int = 70, merchant_id: int = 50, **extra) -> Discount:
    data = {
        "discountId": discount_id,
        "merchantId": merchant_id,
        "type": DiscountType.BASE,
        "name": "Lunch deal",
        "percentage": 10,
    }
    data.update(extra)
    return Discount(**data)


def make_coupon(coupon_id: int = 1, code: str = "ABCD2345", **extra) -> ClaimedCoupon:
    now = now_utc()
    data = {
        "couponId": coupon_id,
        "employeeId": 10,
        "discountId": 70,
        "merchantId": 50,
        "uniqueCode": code,
        "claimedAt": now,
        "lastResetMonth": f"{now.year:04d}-{now.month:02d}",
    }
    data.update(extra)
    return ClaimedCoupon(**data)


class FakeUserRepository:
    def __init__(self, users: Iterable[User] = ()):
        self.users: Dict[int, User] = {u.userId: u for u in users}

    async def find_by_id(self, user_id: int) -> User | None:
        return self.users.get(user_id)

    async def find_by_ids(self, user_ids: Iterable[int]) -> Dict[int, User]:
        return {i: self.users[i] for i in user_ids if i in self.users}

    async def find_by_email(self, email: str) -> User | None:
        return next((u for u in self.users.values() if u.email == email.lower()), None)

    async def find_by_verification_token(self, token: str) -> User | None:
        return next((u for u in self.users.values() if u.verificationToken == token), None)

    async def find_by_reset_token(self, token: str) -> User | None:
        return next((u for u in self.users.values() if u.resetPasswordToken == token), None)

    async def find_by_referral_code(self, code: str) -> User | None:
        return next((u for u in self.users.values() if u.referralCode == code), None)

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
        if await self.find_by_email(email):
            return None
        user = User(
            userId=max(self.users, default=0) + 1,
            publicId=public_id,
            email=email,
            passwordHash=password_hash,
            firstName=first_name,
            lastName=last_name,
            role=role,
            verificationToken=verification_token,
            verificationExpiresAt=verification_expires_at,
            referralCode=referral_code,
            referredBy=referred_by,
            createdAt=now_utc(),
        )
        self.users[user.userId] = user
        return user

    async def update_fields(self, user_id: int, fields: Dict[str, Any]) -> User | None:
        if user_id not in self.users:
            return None
        self.users[user_id] = _apply(self.users[user_id], fields)
        return self.users[user_id]

    async def add_credits(self, user_id: int, amount: int) -> None:
        user = self.users[user_id]
        self.users[user_id] = user.model_copy(update={"accountCredits": user.accountCredits + amount})


class FakeEmployeeRepository:
    def __init__(self, employees: Iterable[Employee] = (), emails: Dict[int, str] | None = None):
        self.employees: Dict[int, Employee] = {e.employeeId: e for e in employees}
        self.emails = emails or {}

    async def find_by_id(self, employee_id: int) -> Employee | None:
        return self.employees.get(employee_id)

    async def find_by_user_id(self, user_id: int) -> Employee | None:
        return next((e for e in self.employees.values() if e.userId == user_id), None)

    async def create_employee(
        self,
        user_id: int,
        company_id: int,
        first_name: str,
        last_name: str,
        status: EmployeeStatus,
        invited_by: int | None = None,
        joined_at: datetime | None = None,
    ) -> Employee:
        employee = Employee(
            employeeId=max(self.employees, default=0) + 1,
            userId=user_id,
            companyId=company_id,
            firstName=first_name,
            lastName=last_name,
            status=status,
            invitedBy=invited_by,
            joinedAt=joined_at,
        )
        self.employees[employee.employeeId] = employee
        return employee

    async def list_by_company(self, company_id: int, status: EmployeeStatus | None, search: str | None,
                              page: int, size: int) -> Tuple[List[Tuple[Employee, str]], int]:
        rows = [
            (e, email) for e, email in await self.list_all_by_company(company_id)
            if (status is None or e.status == status)
            and (not search or search.lower() in f"{e.full_name} {email}".lower())
        ]
        start = (page - 1) * size
        return rows[start:start + size], len(rows)

    async def list_all_by_company(self, company_id: int) -> List[Tuple[Employee, str]]:
        return [(e, self.emails.get(e.employeeId, "")) for e in self.employees.values() if e.companyId == company_id]

    async def count_by_status(self, company_id: int) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for e in self.employees.values():
            if e.companyId == company_id:
                counts[e.status.value] = counts.get(e.status.value, 0) + 1
        return counts

    async def update_fields(self, employee_id: int, fields: Dict[str, Any]) -> Employee | None:
        if employee_id not in self.employees:
            return None
        self.employees[employee_id] = _apply(self.employees[employee_id], fields)
        return self.employees[employee_id]

    async def delete_employee(self, employee_id: int) -> None:
        self.employees.pop(employee_id, None)

    async def deactivate_active_by_company(self, company_id: int) -> int:
        count = 0
        for e in list(self.employees.values()):
            if e.companyId == company_id and e.status == EmployeeStatus.ACTIVE:
                self.employees[e.employeeId] = e.model_copy(update={"status": EmployeeStatus.INACTIVE})
                count += 1
        return count

    async def find_expired_suspensions(self, now: datetime) -> List[Employee]:
        return [
            e for e in self.employees.values()
            if e.status == EmployeeStatus.SUSPENDED and e.suspendedUntil is not None and ensure_utc(e.suspendedUntil) <= now
        ]

    async def find_email(self, employee_id: int) -> str | None:
        return self.emails.get(employee_id)


class FakeCompanyRepository:
    def __init__(self, companies: Iterable[Company] = ()):
        self.companies: Dict[int, Company] = {c.companyId: c for c in companies}

    async def find_by_id(self, company_id: int) -> Company | None:
        return self.companies.get(company_id)

    async def find_by_email_domain(self, domain: str) -> Company | None:
        return next((c for c in self.companies.values() if c.settings.emailDomain == domain), None)

    async def slug_exists(self, slug: str) -> bool:
        return any(c.slug == slug for c in self.companies.values())

    async def create_company(self, name: str, slug: str, city: str, state: str, address: str | None = None,
                             zip_code: str | None = None, admin_user_id: int | None = None,
                             email_domain: str | None = None) -> Company:
        company = Company(
            companyId=max(self.companies, default=0) + 1,
            name=name,
            slug=slug,
            city=city,
            state=state,
            address=address,
            zipCode=zip_code,
            adminUserId=admin_user_id,
            settings={"emailDomain": email_domain},
        )
        self.companies[company.companyId] = company
        return company

    async def update_settings(self, company_id: int, settings) -> Company:
        self.companies[company_id] = self.companies[company_id].model_copy(update={"settings": settings})
        return self.companies[company_id]

    async def set_status(self, company_id: int, status: CompanyStatus) -> None:
        self.companies[company_id] = self.companies[company_id].model_copy(update={"status": status})


_METRIC_FIELDS = ("avgOrderValue", "priceTier", "seatingCapacity", "cateringAvailable", "offersDelivery")


class FakeMerchantRepository:
    def __init__(self, merchants: Iterable[Merchant] = ()):
        self.merchants: Dict[int, Merchant] = {m.merchantId: m for m in merchants}

    async def find_by_id(self, merchant_id: int) -> Merchant | None:
        return self.merchants.get(merchant_id)

    async def find_by_user_id(self, user_id: int) -> Merchant | None:
        return next((m for m in self.merchants.values() if m.userId == user_id), None)

    async def find_by_stripe_customer(self, customer_id: str) -> Merchant | None:
        return next((m for m in self.merchants.values() if m.stripeCustomerId == customer_id), None)

    async def find_by_contact_email(self, email: str) -> Merchant | None:
        return next((m for m in self.merchants.values() if (m.contactEmail or "").lower() == email.lower()), None)

    async def create_merchant(self, user_id: int, business_name: str, slug: str, contact_email: str) -> Merchant:
        merchant = Merchant(
            merchantId=max(self.merchants, default=0) + 1,
            userId=user_id,
            businessName=business_name,
            slug=slug,
            contactEmail=contact_email,
            createdAt=now_utc(),
        )
        self.merchants[merchant.merchantId] = merchant
        return merchant

    async def update_fields(self, merchant_id: int, fields: Dict[str, Any]) -> Merchant | None:
        if merchant_id not in self.merchants:
            return None
        current = self.merchants[merchant_id]
        fields = dict(fields)
        metrics = {name: fields.pop(name) for name in _METRIC_FIELDS if name in fields}
        if metrics:
            fields["businessMetrics"] = {**current.businessMetrics.model_dump(), **metrics}
        self.merchants[merchant_id] = _apply(current, fields)
        return self.merchants[merchant_id]

    async def save_primary_location(self, merchant_id: int, location: MerchantLocation) -> Merchant | None:
        current = self.merchants[merchant_id]
        locations = [location, *current.locations[1:]]
        self.merchants[merchant_id] = current.model_copy(update={"locations": locations})
        return self.merchants[merchant_id]

    async def list_active(self, search: str | None = None) -> List[Merchant]:
        return [
            m for m in self.merchants.values()
            if m.status == MerchantStatus.ACTIVE and (not search or search.lower() in m.businessName.lower())
        ]

    async def list_by_status(self, status: MerchantStatus | None) -> List[Merchant]:
        return [m for m in self.merchants.values() if status is None or m.status == status]

    async def list_onboarded_active(self) -> List[Merchant]:
        return [m for m in self.merchants.values() if m.status == MerchantStatus.ACTIVE and m.onboardingCompleted]


class FakeDiscountRepository:
    def __init__(self, discounts: Iterable[Discount] = ()):
        self.discounts: Dict[int, Discount] = {d.discountId: d for d in discounts}

    async def find_by_id(self, discount_id: int) -> Discount | None:
        return self.discounts.get(discount_id)

    async def list_by_merchant(self, merchant_id: int, active_only: bool = False) -> List[Discount]:
        return [
            d for d in self.discounts.values()
            if d.merchantId == merchant_id and (d.isActive or not active_only)
        ]

    async def list_active_for_merchants(self, merchant_ids: Iterable[int]) -> Dict[int, List[Discount]]:
        wanted = set(merchant_ids)
        result: Dict[int, List[Discount]] = {}
        for d in self.discounts.values():
            if d.isActive and d.merchantId in wanted:
                result.setdefault(d.merchantId, []).append(d)
        return result

    async def create_discount(
        self,
        merchant_id: int,
        type: DiscountType,
        name: str,
        percentage: float,
        priority: int,
        company_id: int | None = None,
        company_name: str | None = None,
        min_spend: float | None = None,
        monthly_usage_limit: int | None = None,
    ) -> Discount:
        discount = Discount(
            discountId=max(self.discounts, default=0) + 1,
            merchantId=merchant_id,
            type=type,
            name=name,
            percentage=percentage,
            priority=priority,
            companyId=company_id,
            companyName=company_name,
            minSpend=min_spend,
            monthlyUsageLimit=monthly_usage_limit,
        )
        self.discounts[discount.discountId] = discount
        return discount

    async def update_fields(self, discount_id: int, fields: Dict[str, Any]) -> Discount | None:
        self.discounts[discount_id] = _apply(self.discounts[discount_id], fields)
        return self.discounts[discount_id]

    async def delete_discount(self, discount_id: int) -> None:
        self.discounts.pop(discount_id, None)

    async def deactivate_by_merchant(self, merchant_id: int) -> int:
        count = 0
        for d in list(self.discounts.values()):
            if d.merchantId == merchant_id and d.isActive:
                self.discounts[d.discountId] = d.model_copy(update={"isActive": False})
                count += 1
        return count


class FakeCouponRepository:
    def __init__(self, coupons: Iterable[ClaimedCoupon] = ()):
        self.coupons: Dict[int, ClaimedCoupon] = {c.couponId: c for c in coupons}
        # employee ids with a usage recorded outside self.coupons
        self.prior_usage: Set[int] = set()
        self.taken_codes: Set[str] = set()

    async def find_by_id(self, coupon_id: int) -> ClaimedCoupon | None:
        return self.coupons.get(coupon_id)

    async def find_by_code(self, code: str) -> ClaimedCoupon | None:
        return next((c for c in self.coupons.values() if c.uniqueCode == code.upper()), None)

    async def find_active_for_merchant(self, employee_id: int, merchant_id: int) -> ClaimedCoupon | None:
        return next(
            (
                c for c in self.coupons.values()
                if c.employeeId == employee_id and c.merchantId == merchant_id and c.status == CouponStatus.ACTIVE
            ),
            None,
        )

    async def create_coupon(self, employee_id: int, discount_id: int, merchant_id: int, code: str, month: str) -> ClaimedCoupon | None:
        if any(c.employeeId == employee_id and c.discountId == discount_id for c in self.coupons.values()):
            raise DuplicateClaimError(f"employee {employee_id} already claimed discount {discount_id}")
        if code in self.taken_codes or await self.find_by_code(code):
            return None
        coupon = ClaimedCoupon(
            couponId=max(self.coupons, default=0) + 1,
            employeeId=employee_id,
            discountId=discount_id,
            merchantId=merchant_id,
            uniqueCode=code,
            claimedAt=now_utc(),
            lastResetMonth=month,
        )
        self.coupons[coupon.couponId] = coupon
        return coupon

    async def list_by_employee(self, employee_id: int, status: CouponStatus | None = None) -> List[ClaimedCoupon]:
        return [
            c for c in self.coupons.values()
            if c.employeeId == employee_id and (status is None or c.status == status)
        ]

    async def active_merchant_ids(self, employee_id: int) -> Set[int]:
        return {c.merchantId for c in await self.list_by_employee(employee_id, CouponStatus.ACTIVE)}

    async def set_status(self, coupon_id: int, status: CouponStatus) -> None:
        self.coupons[coupon_id] = self.coupons[coupon_id].model_copy(update={"status": status})

    async def set_qr(self, coupon_id: int, file_id: str) -> None:
        self.coupons[coupon_id] = self.coupons[coupon_id].model_copy(update={"qrCodeUrl": file_id})

    async def record_usage(self, coupon: ClaimedCoupon, usage: CouponUsage, usage_this_month: int) -> bool:
        stored = self.coupons[coupon.couponId]
        if (
            stored.status != CouponStatus.ACTIVE
            or stored.usageThisMonth != coupon.usageThisMonth
            or stored.lastResetMonth != coupon.lastResetMonth
        ):
            return False
        self.coupons[coupon.couponId] = stored.model_copy(update={
            "usageHistory": [*stored.usageHistory, usage],
            "usageThisMonth": usage_this_month,
            "lastResetMonth": usage.month,
            "redeemedAt": usage.redeemedAt,
            "redemptionNotes": usage.notes,
        })
        return True

    async def has_any_usage(self, employee_id: int) -> bool:
        if employee_id in self.prior_usage:
            return True
        return any(c.employeeId == employee_id and c.usageHistory for c in self.coupons.values())

    async def _cancel(self, employee_id: int, statuses: Tuple[CouponStatus, ...]) -> int:
        count = 0
        for c in list(self.coupons.values()):
            if c.employeeId == employee_id and c.status in statuses:
                self.coupons[c.couponId] = c.model_copy(update={"status": CouponStatus.CANCELLED})
                count += 1
        return count

    async def cancel_active_by_employee(self, employee_id: int) -> int:
        return await self._cancel(employee_id, (CouponStatus.ACTIVE,))

    async def cancel_open_by_employee(self, employee_id: int) -> int:
        return await self._cancel(employee_id, (CouponStatus.ACTIVE, CouponStatus.REDEEMED, CouponStatus.EXPIRED))


class FakePassRepository:
    def __init__(self):
        self.passes: Dict[str, EmployeePass] = {}

    async def find_by_pass_id(self, pass_id: str) -> EmployeePass | None:
        return self.passes.get(pass_id)

    async def find_active_by_employee(self, employee_id: int) -> EmployeePass | None:
        return next(
            (p for p in self.passes.values() if p.employeeId == employee_id and p.status == PassStatus.ACTIVE),
            None,
        )

    async def create_pass(self, pass_id: str, employee_id: int, company_id: int, signature: str) -> EmployeePass:
        employee_pass = EmployeePass(
            passId=pass_id, employeeId=employee_id, companyId=company_id, signature=signature, createdAt=now_utc()
        )
        self.passes[pass_id] = employee_pass
        return employee_pass

    async def set_status(self, pass_id: str, status: PassStatus) -> None:
        self.passes[pass_id] = self.passes[pass_id].model_copy(update={"status": status})

    async def record_use(self, pass_id: str) -> EmployeePass | None:
        current = self.passes.get(pass_id)
        if current is None:
            return None
        self.passes[pass_id] = current.model_copy(update={"usageCount": current.usageCount + 1, "lastUsedAt": now_utc()})
        return self.passes[pass_id]


class FakeModerationRepository:
    def __init__(self):
        self.actions: Dict[int, ModerationAction] = {}

    async def find_by_id(self, action_id: int) -> ModerationAction | None:
        return self.actions.get(action_id)

    async def create_action(
        self,
        performed_by: int | None,
        performed_by_role: str,
        action_type: ModerationActionType,
        reason: ModerationReason,
        target_type: ModerationTarget,
        target_id: int,
        reason_details: str | None = None,
        duration: ModerationDuration | None = None,
        expires_at: datetime | None = None,
        appealable: bool = False,
        appeal_deadline: datetime | None = None,
        previous_state: Dict[str, Any] | None = None,
        new_state: Dict[str, Any] | None = None,
    ) -> ModerationAction:
        action = ModerationAction(
            actionId=len(self.actions) + 1,
            performedBy=performed_by,
            performedByRole=performed_by_role,
            actionType=action_type,
            reason=reason,
            reasonDetails=reason_details,
            targetType=target_type,
            targetId=target_id,
            duration=duration,
            expiresAt=expires_at,
            appealable=appealable,
            appealDeadline=appeal_deadline,
            previousState=previous_state or {},
            newState=new_state or {},
            createdAt=now_utc(),
        )
        self.actions[action.actionId] = action
        return action

    async def history(self, target_type: ModerationTarget, target_id: int, limit: int = 50) -> List[ModerationAction]:
        matches = [a for a in self.actions.values() if a.targetType == target_type and a.targetId == target_id]
        return sorted(matches, key=lambda a: a.actionId, reverse=True)[:limit]

    async def pending_appeals(self) -> List[ModerationAction]:
        return [a for a in self.actions.values() if a.appealStatus == AppealStatus.PENDING]

    async def update_fields(self, action_id: int, fields: Dict[str, Any]) -> ModerationAction | None:
        self.actions[action_id] = _apply(self.actions[action_id], fields)
        return self.actions[action_id]

    def of_type(self, action_type: ModerationActionType) -> List[ModerationAction]:
        return [a for a in self.actions.values() if a.actionType == action_type]


class FakeReferralRepository:
    def __init__(self, referrals: Iterable[Referral] = ()):
        self.referrals: Dict[int, Referral] = {r.referralId: r for r in referrals}

    async def find_pending(self, referrer_id: int, email: str) -> Referral | None:
        return next(
            (
                r for r in self.referrals.values()
                if r.referrerId == referrer_id and r.referredEmail == email.lower() and r.status == ReferralStatus.PENDING
            ),
            None,
        )

    async def find_registered_by_referred_user(self, user_id: int) -> Referral | None:
        return next(
            (r for r in self.referrals.values() if r.referredUserId == user_id and r.status == ReferralStatus.REGISTERED),
            None,
        )

    async def list_by_referrer(self, referrer_id: int, limit: int | None = None) -> List[Referral]:
        matches = [r for r in self.referrals.values() if r.referrerId == referrer_id]
        return matches[:limit] if limit else matches

    async def stats(self, referrer_id: int) -> Dict[str, int]:
        mine = await self.list_by_referrer(referrer_id)
        return {
            "total": len(mine),
            "pending": sum(1 for r in mine if r.status == ReferralStatus.PENDING),
            "registered": sum(1 for r in mine if r.status == ReferralStatus.REGISTERED),
            "completed": sum(1 for r in mine if r.status == ReferralStatus.COMPLETED),
            "sameCompany": sum(1 for r in mine if r.sameCompany),
        }

    async def create_referral(
        self,
        referrer_id: int,
        referred_email: str,
        referral_code: str,
        status: ReferralStatus,
        referrer_company_id: int | None = None,
        referred_user_id: int | None = None,
        referred_company_id: int | None = None,
        same_company: bool = False,
        registered_at: datetime | None = None,
    ) -> Referral:
        referral = Referral(
            referralId=len(self.referrals) + 1,
            referrerId=referrer_id,
            referrerCompanyId=referrer_company_id,
            referredEmail=referred_email.lower(),
            referredUserId=referred_user_id,
            referredCompanyId=referred_company_id,
            status=status,
            referralCode=referral_code,
            sameCompany=same_company,
            registeredAt=registered_at,
            createdAt=now_utc(),
        )
        self.referrals[referral.referralId] = referral
        return referral

    async def update_fields(self, referral_id: int, fields: Dict[str, Any]) -> None:
        self.referrals[referral_id] = _apply(self.referrals[referral_id], fields)


class FakeMerchantReferralRepository:
    def __init__(self, referrals: Iterable[MerchantReferral] = ()):
        self.referrals: Dict[int, MerchantReferral] = {r.referralId: r for r in referrals}

    async def find_by_id(self, referral_id: int) -> MerchantReferral | None:
        return self.referrals.get(referral_id)

    async def find_by_referrer_and_email(self, merchant_id: int, email: str) -> MerchantReferral | None:
        return next(
            (r for r in self.referrals.values() if r.referrerMerchantId == merchant_id and r.referredEmail == email),
            None,
        )

    async def find_by_referred_merchant(self, merchant_id: int) -> MerchantReferral | None:
        return next((r for r in self.referrals.values() if r.referredMerchantId == merchant_id), None)

    async def find_unlinked_by_email(self, email: str) -> MerchantReferral | None:
        return next(
            (r for r in self.referrals.values() if r.referredMerchantId is None and r.referredEmail == email.lower()),
            None,
        )

    async def list_by_referrer(self, merchant_id: int) -> List[MerchantReferral]:
        return [r for r in self.referrals.values() if r.referrerMerchantId == merchant_id]

    async def count_created_since(self, merchant_id: int, since: datetime) -> int:
        return sum(
            1 for r in self.referrals.values()
            if r.referrerMerchantId == merchant_id and r.createdAt is not None and ensure_utc(r.createdAt) >= since
        )

    async def claimed_months_since(self, merchant_id: int, since: datetime) -> int:
        return sum(
            r.referrerRewardMonths for r in self.referrals.values()
            if r.referrerMerchantId == merchant_id
            and r.referrerRewardClaimed
            and r.referrerRewardClaimedAt is not None
            and ensure_utc(r.referrerRewardClaimedAt) >= since
        )

    async def create_referral(
        self,
        referrer_merchant_id: int,
        referred_business_name: str,
        referred_email: str,
        referred_contact_name: str | None,
        referred_phone: str | None,
        referred_city: str | None,
        referred_state: str | None,
        why_good_fit: str | None,
        referrer_reward_months: int,
        referee_reward_months: int,
    ) -> MerchantReferral:
        referral = MerchantReferral(
            referralId=len(self.referrals) + 1,
            referrerMerchantId=referrer_merchant_id,
            referredBusinessName=referred_business_name,
            referredEmail=referred_email,
            referredContactName=referred_contact_name,
            referredPhone=referred_phone,
            referredCity=referred_city,
            referredState=referred_state,
            whyGoodFit=why_good_fit,
            referrerRewardMonths=referrer_reward_months,
            refereeRewardMonths=referee_reward_months,
            createdAt=now_utc(),
        )
        self.referrals[referral.referralId] = referral
        return referral

    async def update_fields(self, referral_id: int, fields: Dict[str, Any]) -> MerchantReferral | None:
        self.referrals[referral_id] = _apply(self.referrals[referral_id], fields)
        return self.referrals[referral_id]

    async def delete_referral(self, referral_id: int) -> None:
        self.referrals.pop(referral_id, None)


def make_merchant_referral(referral_id: int = 1, referrer_merchant_id: int = 50, **extra) -> MerchantReferral:
    data = {
        "referralId": referral_id,
        "referrerMerchantId": referrer_merchant_id,
        "referredBusinessName": "Taco Town",
        "referredEmail": "owner@tacotown.com",
        "status": MerchantReferralStatus.PENDING,
        "createdAt": now_utc(),
    }
    data.update(extra)
    return MerchantReferral(**data)


class FakeGateway:
    """Payment gateway that records calls instead of talking to Stripe."""

    def __init__(self, event: Dict[str, Any] | None = None, configured: bool = True):
        self.event = event or {}
        self._configured = configured
        self.extended: List[Tuple[str, int]] = []

    @property
    def configured(self) -> bool:
        return self._configured

    async def get_or_create_customer(self, email: str, name: str, merchant_id: int) -> str:
        return f"cus_{merchant_id}"

    async def create_checkout_session(self, customer_id: str, merchant_id: int) -> Dict[str, Any]:
        return {"url": f"https://checkout.test/{customer_id}", "sessionId": f"cs_{merchant_id}"}

    async def create_portal_session(self, customer_id: str) -> str:
        return f"https://portal.test/{customer_id}"

    async def set_cancel_at_period_end(self, subscription_id: str, cancel: bool) -> Dict[str, Any]:
        return {"id": subscription_id, "cancel_at_period_end": cancel}

    async def extend_trial(self, subscription_id: str, months: int) -> datetime:
        self.extended.append((subscription_id, months))
        return now_utc() + timedelta(days=30 * months)

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        from services.merchant.app.core.BillingService import WebhookSignatureError

        if signature != "valid":
            raise WebhookSignatureError("signature mismatch")
        return self.event


class FakeMailer:
    def __init__(self, success: bool = True):
        self.success = success
        self.sent: List[Tuple[str, str]] = []

    def __getattr__(self, name: str):
        if not name.startswith("send_"):
            raise AttributeError(name)

        async def _send(email: str, *args, **kwargs) -> EmailResult:
            self.sent.append((name, email))
            return EmailResult(success=self.success, id="test" if self.success else None,
                               error=None if self.success else "boom")

        return _send


class StubUserService:
    """Records onboarding steps marked by the code under test."""

    def __init__(self):
        self.steps: List[Tuple[int, str]] = []

    async def mark_step(self, user_id: int, step: str):
        self.steps.append((user_id, step))


class StubReferralService:
    def __init__(self):
        self.completed: List[int] = []

    async def complete_for(self, user_id: int) -> bool:
        self.completed.append(user_id)
        return True


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FakeAdminRepository:
    def __init__(self, admins: Iterable[CompanyAdmin] = ()):
        self.admins: Dict[int, CompanyAdmin] = {a.adminId: a for a in admins}

    async def find_active_by_user(self, user_id: int) -> CompanyAdmin | None:
        return next(
            (a for a in self.admins.values() if a.userId == user_id and a.status == AdminStatus.ACTIVE),
            None,
        )

    async def find_by_user_and_company(self, user_id: int, company_id: int) -> CompanyAdmin | None:
        return next((a for a in self.admins.values() if a.userId == user_id and a.companyId == company_id), None)

    async def find_by_id(self, admin_id: int) -> CompanyAdmin | None:
        return self.admins.get(admin_id)

    async def list_by_company(self, company_id: int) -> List[CompanyAdmin]:
        return [a for a in self.admins.values() if a.companyId == company_id]

    async def create_admin(
        self,
        user_id: int,
        company_id: int,
        role: AdminRole,
        permissions: AdminPermissions,
        invited_by: int | None = None,
        title: str | None = None,
        status: AdminStatus = AdminStatus.ACTIVE,
    ) -> CompanyAdmin:
        admin = CompanyAdmin(
            adminId=max(self.admins, default=0) + 1,
            userId=user_id,
            companyId=company_id,
            role=role,
            permissions=permissions,
            invitedBy=invited_by,
            title=title,
            status=status,
        )
        self.admins[admin.adminId] = admin
        return admin

    async def update_fields(self, admin_id: int, fields: Dict[str, Any]) -> CompanyAdmin | None:
        self.admins[admin_id] = _apply(self.admins[admin_id], fields)
        return self.admins[admin_id]

    async def delete_admin(self, admin_id: int) -> None:
        self.admins.pop(admin_id, None)

    async def count_active_owners(self, company_id: int) -> int:
        return sum(
            1 for a in self.admins.values()
            if a.companyId == company_id and a.role == AdminRole.OWNER and a.status == AdminStatus.ACTIVE
        )


class FakeInviteRepository:
    def __init__(self, invites: Iterable[InviteCode] = ()):
        self.invites: Dict[int, InviteCode] = {i.inviteId: i for i in invites}

    async def find_by_code(self, code: str) -> InviteCode | None:
        return next((i for i in self.invites.values() if i.code == code), None)

    async def find_by_id(self, invite_id: int) -> InviteCode | None:
        return self.invites.get(invite_id)

    async def list_by_company(self, company_id: int, status: InviteStatus | None = None, limit: int = 100) -> List[InviteCode]:
        matches = [i for i in self.invites.values() if i.companyId == company_id and (status is None or i.status == status)]
        return matches[:limit]

    async def emails_with_active_invite(self, company_id: int, emails: Iterable[str]) -> Set[str]:
        wanted = {e.lower() for e in emails}
        return {
            i.email for i in self.invites.values()
            if i.companyId == company_id and i.status == InviteStatus.ACTIVE and i.email in wanted
        }

    async def create_invite(self, code: str, company_id: int, created_by: int, email: str | None,
                            expires_at: datetime) -> InviteCode | None:
        if await self.find_by_code(code):
            return None
        invite = InviteCode(
            inviteId=max(self.invites, default=0) + 1,
            code=code,
            companyId=company_id,
            createdBy=created_by,
            email=email,
            expiresAt=expires_at,
            createdAt=now_utc(),
        )
        self.invites[invite.inviteId] = invite
        return invite

    async def mark_used(self, invite_id: int, user_id: int, used_at: datetime) -> None:
        self.invites[invite_id] = self.invites[invite_id].model_copy(
            update={"status": InviteStatus.USED, "usedBy": user_id, "usedAt": used_at}
        )

    async def set_status(self, invite_id: int, status: InviteStatus) -> None:
        self.invites[invite_id] = self.invites[invite_id].model_copy(update={"status": status})

    async def count_active(self, company_id: int, now: datetime) -> int:
        return sum(
            1 for i in self.invites.values()
            if i.companyId == company_id and i.effective_status(now) == InviteStatus.ACTIVE
        )


def make_admin(admin_id: int = 1, user_id: int = 2, company_id: int = 100, role: AdminRole = AdminRole.OWNER) -> CompanyAdmin:
    return CompanyAdmin(
        adminId=admin_id,
        userId=user_id,
        companyId=company_id,
        role=role,
        permissions=default_permissions(role),
    )
