"""
End-to-end scenarios through ApprovalWorkflow.

Covers:
- A delegation already past its expiry is removed by the next sweep
- Repeated sweeps leave exactly one removal and one notification
- A second delegation is refused while one is active
- Push privacy for users not assigned to the project
- Budget: 4000 then 7000 against a 10000 Marketing allocation
- Role fallback for a project with no reviewers
- Open-ended delegations are never due
- Full submit / delegate / approve / expire flow
"""

from datetime import timedelta
from decimal import Decimal

from approval_kernel.domain.types import (
    AuthoritySource,
    DelegationStatus,
    ExpenseStatus,
    NotificationType,
    OperationStatus,
    UserRole,
)
from approval_kernel.selectors.delegation_selector import DelegationSelector


class TestExpiryScenarios:

    def test_delegation_past_expiry_is_swept(self, workflow, delegation_setup, clock, team_of):
        s = delegation_setup
        created = workflow.create_delegation(
            s["project_id"], s["delegate"],
            expiring_date=clock.now() - timedelta(seconds=1),
        )
        assert created.status == OperationStatus.SUCCESS
        assert s["delegate"] in team_of(s["project_id"])

        result = workflow.run_expiry_sweep_now()

        assert result.total_deactivated == 1
        record = workflow.list_delegations(s["project_id"])[0]
        assert record.status == DelegationStatus.EXPIRED
        assert not record.is_active
        assert s["delegate"] not in team_of(s["project_id"])

    def test_repeated_sweeps_have_one_set_of_side_effects(
        self, workflow, delegation_setup, clock, team_of, notifications_of,
    ):
        s = delegation_setup
        workflow.create_delegation(s["project_id"], s["delegate"],
                                   expiring_date=clock.now() + timedelta(hours=1))
        clock.advance_hours(2)

        first = workflow.run_expiry_sweep_now()
        second = workflow.run_expiry_sweep_now()

        assert first.success and second.success
        assert first.total_deactivated == 1
        assert second.total_deactivated == 0
        ended = notifications_of(NotificationType.DELEGATION_EXPIRED)
        assert sorted(row.recipient_id for row in ended) == sorted([s["delegate"], s["head"]])
        assert s["delegate"] not in team_of(s["project_id"])

    def test_open_ended_delegation_is_never_due(self, session, workflow, delegation_setup, clock):
        s = delegation_setup
        workflow.create_delegation(s["project_id"], s["delegate"])
        clock.advance(timedelta(days=3650).total_seconds())

        assert DelegationSelector(session).list_due(s["project_id"], clock.now()) == []
        assert workflow.run_expiry_sweep_now().total_deactivated == 0
        assert workflow.active_delegation(s["project_id"]).approver_id == s["delegate"]


class TestSingleActiveDelegation:

    def test_second_create_is_refused(self, workflow, delegation_setup, make_user, clock):
        s = delegation_setup
        other = make_user(UserRole.APPROVER, name="Other")
        first = workflow.create_delegation(s["project_id"], s["delegate"],
                                           expiring_date=clock.now() + timedelta(days=2))

        second = workflow.create_delegation(s["project_id"], other)

        assert second.status == OperationStatus.REJECTED
        assert second.error_code == "DELEGATION_ALREADY_ACTIVE"
        active = workflow.active_delegation(s["project_id"])
        assert active.id == first.delegation.id
        assert active.version == first.delegation.version
        assert active.expiring_date == first.delegation.expiring_date
        assert len(workflow.list_delegations(s["project_id"])) == 1


class TestPushPrivacy:

    def test_unassigned_user_never_receives_push(
        self, workflow, make_user, make_project, push,
    ):
        approver = make_user(UserRole.APPROVER, device_token="tok-approver")
        project_id = make_project("Alpha", budgets={"Marketing": "10000"},
                                  approvers=[approver])
        other_project = make_project("Elsewhere")
        member = make_user(UserRole.USER, device_token="tok-member",
                           assigned_projects=[project_id])
        stranger = make_user(UserRole.USER, device_token="tok-stranger",
                             assigned_projects=[other_project])

        assert workflow.is_user_assigned_to_project(member, project_id)
        assert not workflow.is_user_assigned_to_project(stranger, project_id)

        fanout = workflow.router.notify_by_role_filtered(
            UserRole.USER, project_id, "Heads up", "Shoot moved",
            NotificationType.PROJECT_ASSIGNMENT,
        )
        assert fanout.delivered == (member,)
        assert stranger in fanout.not_assigned

        push.sent.clear()
        workflow.submit_expense(project_id, "Marketing", "Props", "100", member,
                                submitted_by_name="Member")
        assert "tok-stranger" not in push.tokens()
        assert "tok-approver" in push.tokens()


class TestBudgetScenario:

    def test_alpha_marketing(self, workflow, make_user, make_project):
        approver = make_user(UserRole.APPROVER, name="Reviewer")
        project_id = make_project("Alpha", budgets={"Marketing": "10000"},
                                  approvers=[approver])
        submitter = make_user(UserRole.USER, assigned_projects=[project_id])

        first = workflow.evaluate_budget(project_id, "Marketing", Decimal("4000"))
        assert first.allowed
        assert first.remaining == Decimal("10000")

        submitted = workflow.submit_expense(project_id, "Marketing", "Ads", "4000", submitter)
        decided = workflow.decide_expense(submitted.expense.id, True, "Reviewer",
                                          reviewer_id=approver)
        assert decided.expense.status == ExpenseStatus.APPROVED

        second = workflow.evaluate_budget(project_id, "Marketing", Decimal("7000"))
        assert not second.allowed
        assert second.remaining == Decimal("6000")
        assert "would exceed remaining budget for Marketing department" in second.reason


class TestFallbackScenario:

    def test_beta_falls_back_to_system_approvers(self, workflow, make_user, make_project):
        approver = make_user(UserRole.APPROVER, name="Only Approver")
        project_id = make_project("Beta")

        authority = workflow.get_current_authority(project_id)

        assert authority.approver_ids == {approver}
        assert authority.source == AuthoritySource.FALLBACK


class TestEndToEnd:

    def test_delegate_approves_until_expiry(
        self, workflow, delegation_setup, make_user, clock, push, notifications_of,
    ):
        s = delegation_setup
        submitter = make_user(UserRole.USER, name="Asha", device_token="tok-asha",
                              assigned_projects=[s["project_id"]])
        workflow.create_delegation(s["project_id"], s["delegate"],
                                   expiring_date=clock.now() + timedelta(hours=4),
                                   assigned_by=s["head"], assigned_by_name="Head")

        authority = workflow.get_current_authority(s["project_id"])
        assert s["delegate"] in authority.approver_ids
        assert authority.delegated_approver_id == s["delegate"]

        first = workflow.submit_expense(s["project_id"], "Marketing", "Ads", "2500",
                                        submitter, submitted_by_name="Asha")
        assert first.success
        assert s["delegate"] in first.dispatch.recipients

        approved = workflow.decide_expense(first.expense.id, True, "Delegate",
                                           reviewer_id=s["delegate"])
        assert approved.success
        assert approved.notified
        assert "tok-asha" in push.tokens()

        clock.advance_hours(5)
        second = workflow.submit_expense(s["project_id"], "Marketing", "Ads", "1000",
                                         submitter, submitted_by_name="Asha")
        refused = workflow.decide_expense(second.expense.id, True, "Delegate",
                                          reviewer_id=s["delegate"])
        assert refused.error_code == "UNAUTHORIZED_REVIEWER"

        authority = workflow.get_current_authority(s["project_id"])
        assert s["delegate"] not in authority.approver_ids
        assert workflow.active_delegation(s["project_id"]) is None
        ended = notifications_of(NotificationType.DELEGATION_EXPIRED)
        assert [row.recipient_id for row in ended].count(s["delegate"]) == 1

        summary = workflow.get_budget_summary(s["project_id"])
        assert summary["Marketing"].spent == Decimal("2500")
        assert summary["Marketing"].remaining == Decimal("7500")
