import asyncio
import io
from datetime import datetime, timedelta, timezone

import pytest
from openpyxl import load_workbook

from libs.common.cache import CacheKeys
from libs.common.timezone import now_utc
from libs.schemas import (
    AdminRole,
    AdminStatus,
    AuditAction,
    DiscountType,
    EmployeeStatus,
    InviteCode,
    InviteStatus,
    UserRole,
)

from services.company.app.core.CompanyService import CompanyError, CompanyService
from services.company.app.core.InviteService import InviteError, InviteService
from services.company.app.core.ReportService import ReportError, ReportService
from services.company.app.core.SavingsService import SavingsService, best_percentage, potential_savings

from tests.fakes import (
    FakeAdminRepository,
    FakeCompanyRepository,
    FakeDiscountRepository,
    FakeEmployeeRepository,
    FakeInviteRepository,
    FakeMailer,
    FakeMerchantRepository,
    FakeUserRepository,
    make_admin,
    make_company,
    make_discount,
    make_employee,
    make_merchant,
    make_user,
)

OWNER_ID = 2
CONTACT_ID = 3


class _Company:
    def __init__(self, cache, audit, employees=(), invites=()):
        self.users = FakeUserRepository([
            make_user(OWNER_ID, "owner@acme.com", UserRole.COMPANY_ADMIN),
            make_user(CONTACT_ID, "contact@acme.com", UserRole.COMPANY_ADMIN),
            make_user(4, "hr@acme.com"),
        ])
        self.companies = FakeCompanyRepository([make_company()])
        self.admins = FakeAdminRepository([
            make_admin(1, OWNER_ID),
            make_admin(2, CONTACT_ID, role=AdminRole.CONTACT),
        ])
        self.employees = FakeEmployeeRepository(
            employees, {e.employeeId: f"user{e.userId}@acme.com" for e in employees}
        )
        self.invites = FakeInviteRepository(invites)
        self.mailer = FakeMailer()
        self.cache = cache
        self.audit = audit
        self.service = CompanyService(
            self.companies, self.admins, self.employees, self.invites, self.users, cache, audit
        )
        self.invite_service = InviteService(self.invites, self.service, self.users, self.mailer, 30, audit)


def test_best_percentage_prefers_own_company_deal() -> None:
    discounts = [
        make_discount(1, percentage=10),
        make_discount(2, type=DiscountType.COMPANY, companyId=100, companyName="Acme", percentage=20),
        make_discount(3, type=DiscountType.COMPANY, companyId=200, companyName="Other", percentage=30),
        make_discount(4, type=DiscountType.SPEND_THRESHOLD, minSpend=50, percentage=40),
    ]
    assert best_percentage(discounts, 100) == 20
    assert best_percentage(discounts, 300) == 10
    assert best_percentage([make_discount(isActive=False)], 100) == 0.0


def test_potential_savings() -> None:
    assert potential_savings(25.0, 10, 40) == {"perVisit": 2.5, "perEmployee": 5.0, "monthlyTotal": 200.0}
    assert potential_savings(30.0, 15, 10, visits=4)["monthlyTotal"] == 180.0


def test_savings_report_is_cached(cache, audit) -> None:
    ctx = _Company(cache, audit, employees=[
        make_employee(10, 1),
        make_employee(11, 5),
        make_employee(12, 6, status=EmployeeStatus.PENDING),
    ])
    merchants = FakeMerchantRepository([
        make_merchant(50, onboardingCompleted=True, businessMetrics={"avgOrderValue": 20.0}),
        make_merchant(51, businessName="No Metrics", onboardingCompleted=True),
    ])

    async def list_onboarded_active():
        return list(merchants.merchants.values())

    merchants.list_onboarded_active = list_onboarded_active
    discounts = FakeDiscountRepository([make_discount(70, 50, percentage=15), make_discount(71, 51)])
    service = SavingsService(ctx.service, ctx.employees, merchants, discounts, cache=cache)

    report = asyncio.run(service.savings(OWNER_ID))

    assert report["employeeCount"] == 2
    assert [row["merchantId"] for row in report["merchants"]] == [50]
    assert report["totalPotentialMonthlySavings"] == 12.0
    assert report["totalPotentialAnnualSavings"] == 144.0
    assert asyncio.run(cache.get(CacheKeys.company_stats(100)))["employeeCount"] == 2


def test_require_admin_and_permissions(cache, audit) -> None:
    ctx = _Company(cache, audit)

    with pytest.raises(CompanyError) as err:
        asyncio.run(ctx.service.require_admin(999))
    assert err.value.code == "ERR-FORBIDDEN" and err.value.message == "Not a company admin"

    with pytest.raises(CompanyError) as err:
        asyncio.run(ctx.service.require_permission(CONTACT_ID, "manageEmployees"))
    assert err.value.message == "No permission to manage employees"

    assert asyncio.run(ctx.service.require_permission(CONTACT_ID, "viewReports")).adminId == 2


def test_update_settings_normalizes_domain(cache, audit) -> None:
    ctx = _Company(cache, audit)

    company = asyncio.run(ctx.service.update_settings(
        OWNER_ID, {"emailDomain": " @Acme.COM ", "autoApproveEmployees": True, "allowPublicDeals": None}
    ))

    assert company.settings.emailDomain == "acme.com"
    assert company.settings.autoApproveEmployees is True
    assert company.settings.allowPublicDeals is True
    assert audit.pending[-1].action == AuditAction.EMPLOYEE_UPDATED


def test_update_employee_activation_stamps_joined_and_clears_stats(cache, audit) -> None:
    ctx = _Company(cache, audit, employees=[make_employee(10, 1, status=EmployeeStatus.PENDING)])
    asyncio.run(cache.set(CacheKeys.company_stats(100), {"stale": True}))

    item = asyncio.run(ctx.service.update_employee(OWNER_ID, 10, {"status": "active", "department": "Sales"}))

    assert item.status == "ACTIVE" and item.department == "Sales"
    assert ctx.employees.employees[10].joinedAt is not None
    assert asyncio.run(cache.get(CacheKeys.company_stats(100))) is None

    with pytest.raises(CompanyError) as err:
        asyncio.run(ctx.service.update_employee(OWNER_ID, 10, {"status": "asleep"}))
    assert err.value.code == "ERR-IVD-VALUE"


def test_employees_of_other_companies_are_hidden(cache, audit) -> None:
    ctx = _Company(cache, audit, employees=[make_employee(10, 1, company_id=200)])
    with pytest.raises(CompanyError) as err:
        asyncio.run(ctx.service.delete_employee(OWNER_ID, 10))
    assert err.value.code == "ERR-NOT-FOUND"
    assert 10 in ctx.employees.employees


def test_list_employees_pages(cache, audit) -> None:
    ctx = _Company(cache, audit, employees=[make_employee(i, i) for i in range(10, 15)])

    page = asyncio.run(ctx.service.list_employees(OWNER_ID, page=2, size=2))

    assert page.total == 5 and page.pages == 3
    assert [item.employeeId for item in page.items] == [12, 13]


def test_admin_management_rules(cache, audit) -> None:
    ctx = _Company(cache, audit)

    added = asyncio.run(ctx.service.add_admin(OWNER_ID, "hr@acme.com", "hr", title="People"))
    assert added.permissions.manageInvites and not added.permissions.manageAdmins
    assert ctx.users.users[4].role == UserRole.COMPANY_ADMIN

    with pytest.raises(CompanyError) as err:
        asyncio.run(ctx.service.add_admin(OWNER_ID, "hr@acme.com", "HR"))
    assert err.value.code == "ERR-DUP-VALUE"

    with pytest.raises(CompanyError) as err:
        asyncio.run(ctx.service.remove_admin(OWNER_ID, 1))
    assert err.value.message == "Cannot remove yourself"

    updated = asyncio.run(ctx.service.update_admin(OWNER_ID, added.adminId, {"status": "inactive"}))
    assert updated.status == AdminStatus.INACTIVE

    asyncio.run(ctx.service.remove_admin(OWNER_ID, 2))
    assert 2 not in ctx.admins.admins


def test_roster_exports(cache, audit) -> None:
    joined = datetime(2024, 2, 1, tzinfo=timezone.utc)
    ctx = _Company(cache, audit, employees=[make_employee(10, 1, department="Ops", joinedAt=joined)])
    reports = ReportService(ctx.service)

    csv_file = asyncio.run(reports.export_roster(OWNER_ID, "CSV"))
    text = csv_file.content.decode("utf-8-sig")
    assert csv_file.content.startswith(b"\xef\xbb\xbf")
    assert text.splitlines()[0] == "Name,Email,Department,Job Title,Status,Joined"
    assert "Jane Doe,user1@acme.com,Ops,,ACTIVE,2024-02-01" in text
    assert csv_file.filename.endswith(".csv") and csv_file.media_type == "text/csv"

    xlsx_file = asyncio.run(reports.export_roster(OWNER_ID, "xlsx"))
    sheet = load_workbook(io.BytesIO(xlsx_file.content)).active
    assert sheet["A2"].value == "Jane Doe"

    pdf_file = asyncio.run(reports.export_roster(OWNER_ID, "pdf"))
    assert pdf_file.content.startswith(b"%PDF")

    with pytest.raises(ReportError) as err:
        asyncio.run(reports.export_roster(OWNER_ID, "docx"))
    assert err.value.code == "ERR-IVD-VALUE"


def test_create_unbound_invites(cache, audit) -> None:
    ctx = _Company(cache, audit)

    result = asyncio.run(ctx.invite_service.create_invites(OWNER_ID, count=3, expires_in_days=7))

    assert len(result["invites"]) == 3
    assert len({invite.code for invite in result["invites"]}) == 3
    assert all(invite.email is None for invite in result["invites"])
    assert ctx.mailer.sent == []
    assert audit.pending[-1].metadata == {"count": 3, "skipped": 0, "expiresInDays": 7}


def test_create_email_invites_skips_existing(cache, audit) -> None:
    existing = InviteCode(
        inviteId=1, code="AAAA-BBBB", companyId=100, createdBy=OWNER_ID,
        email="bob@acme.com", expiresAt=now_utc() + timedelta(days=5),
    )
    ctx = _Company(cache, audit, invites=[existing])

    result = asyncio.run(ctx.invite_service.create_invites(
        OWNER_ID, emails=["Bob@acme.com", "amy@acme.com", "amy@acme.com"]
    ))

    assert result["skipped"] == ["bob@acme.com"]
    assert [invite.email for invite in result["invites"]] == ["amy@acme.com"]
    assert ctx.mailer.sent == [("send_invite_email", "amy@acme.com")]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"count": 0},
        {"count": 101},
        {"count": 1, "expires_in_days": 0},
        {"count": 1, "expires_in_days": 366},
        {"emails": ["not-an-email"]},
    ],
)
def test_invite_validation(cache, audit, kwargs) -> None:
    ctx = _Company(cache, audit)
    with pytest.raises(InviteError) as err:
        asyncio.run(ctx.invite_service.create_invites(OWNER_ID, **kwargs))
    assert err.value.code == "ERR-IVD-VALUE"


def test_contact_cannot_create_invites(cache, audit) -> None:
    ctx = _Company(cache, audit)
    with pytest.raises(CompanyError) as err:
        asyncio.run(ctx.invite_service.create_invites(CONTACT_ID, count=1))
    assert err.value.code == "ERR-FORBIDDEN"


def test_list_invites_reports_effective_status(cache, audit) -> None:
    ctx = _Company(cache, audit, invites=[
        InviteCode(inviteId=1, code="AAAA-AAAA", companyId=100, createdBy=OWNER_ID,
                   expiresAt=now_utc() + timedelta(days=1)),
        InviteCode(inviteId=2, code="BBBB-BBBB", companyId=100, createdBy=OWNER_ID,
                   expiresAt=now_utc() - timedelta(days=1)),
    ])

    expired = asyncio.run(ctx.invite_service.list_invites(OWNER_ID, "expired"))
    assert [invite.inviteId for invite in expired] == [2]
    assert expired[0].status == InviteStatus.EXPIRED

    asyncio.run(ctx.invite_service.revoke(OWNER_ID, 1))
    assert ctx.invites.invites[1].status == InviteStatus.REVOKED
    assert audit.pending[-1].action == AuditAction.INVITE_REVOKED
