"""
Unit tests for VerificationService.

Runs the service against the in-memory identity store (same uniqueness
and guard rules as PostgreSQL) with a mocked chat platform and mailer.
"""

import asyncio
from unittest.mock import call

import pytest

from src.domain import messages
from src.domain.exceptions import (
    ConflictError,
    DomainNotApproved,
    EmailAlreadyClaimed,
    ExternalServiceError,
    InvalidEmailFormat,
    NotFoundError,
    UnknownTeamError,
    ValidationError,
)
from src.domain.ports import MemberState
from src.domain.verification import SubmitResult

pytestmark = pytest.mark.anyio


class TestMemberJoined:
    async def test_unknown_member_gets_welcome(self, service, platform) -> None:
        assert await service.member_joined("1", "alice") is None
        platform.send_direct_message.assert_awaited_once_with("1", messages.DEFAULT_WELCOME)

    async def test_custom_welcome(self, service, platform) -> None:
        service.welcome_message = "Hi there"
        await service.member_joined("1", "alice")
        platform.send_direct_message.assert_awaited_once_with("1", "Hi there")

    async def test_pending_member_gets_welcome_again(self, service, repository, platform) -> None:
        repository.seed("1", "alice@acme.com")
        await service.member_joined("1", "alice")
        platform.send_direct_message.assert_awaited_once_with("1", messages.DEFAULT_WELCOME)

    async def test_verified_member_gets_roles_back(self, service, repository, platform) -> None:
        repository.seed("1", "alice@acme.com", MemberState.VERIFIED, team_role="Design")

        report = await service.member_joined("1", "alice")

        assert report.ok
        assert platform.grant_role.await_args_list == [call("1", "role-member"), call("1", "role-design")]
        platform.send_direct_message.assert_not_awaited()

    async def test_restricted_member_gets_notice_and_no_roles(self, service, repository, platform) -> None:
        repository.seed("1", "alice@acme.com", MemberState.RESTRICTED, team_role="Design")

        await service.member_joined("1", "alice")

        platform.grant_role.assert_not_awaited()
        platform.send_direct_message.assert_awaited_once_with("1", messages.RESTRICTED)

    async def test_roles_revoked_when_restricted_during_restore(self, service, repository, platform) -> None:
        repository.seed("1", "alice@acme.com", MemberState.VERIFIED, team_role="Design")

        async def restrict_mid_grant(platform_id: str, role_id: str) -> None:
            platform.grant_role.side_effect = None
            await service.restrict(platform_id, "spam")

        platform.grant_role.side_effect = restrict_mid_grant

        await service.member_joined("1", "alice")

        assert repository.records["1"].state is MemberState.RESTRICTED
        assert platform.revoke_role.await_args_list[-2:] == [call("1", "role-member"), call("1", "role-design")]
        assert platform.revoke_role.await_count == 4

    async def test_undeliverable_welcome_is_not_an_error(self, service, platform) -> None:
        platform.send_direct_message.side_effect = ExternalServiceError("DMs closed")
        assert await service.member_joined("1", "alice") is None


class TestSubmitEmail:
    async def test_happy_path_creates_pending_and_sends_mail(self, service, repository, email_sender) -> None:
        result = await service.submit_email("1", "alice", "  Alice@ACME.com ")

        assert result is SubmitResult.SENT
        record = repository.records["1"]
        assert record.state is MemberState.PENDING
        assert record.email == "alice@acme.com"
        assert len(record.verification_code) == 64

        to, subject, text_body, html_body = email_sender.send.await_args.args
        assert to == "alice@acme.com"
        assert subject == "Verify Your Account"
        assert f"https://verify.example.com/verify?code={record.verification_code}" in text_body
        assert "Select your team" in text_body
        assert "<html>" in html_body

    async def test_plain_mode_mail_omits_team_step(self, plain_service, email_sender) -> None:
        await plain_service.submit_email("1", "alice", "alice@acme.com")
        text_body = email_sender.send.await_args.args[2]
        assert "team" not in text_body.lower()

    async def test_invalid_format(self, service, repository) -> None:
        with pytest.raises(InvalidEmailFormat):
            await service.submit_email("1", "alice", "hello there")
        assert repository.records == {}

    async def test_unapproved_domain(self, service, repository, email_sender) -> None:
        with pytest.raises(DomainNotApproved) as exc_info:
            await service.submit_email("1", "alice", "alice@evil.com")
        assert exc_info.value.email == "alice@evil.com"
        assert repository.records == {}
        email_sender.send.assert_not_awaited()

    async def test_suffix_domain_rejected(self, service) -> None:
        with pytest.raises(DomainNotApproved):
            await service.submit_email("1", "alice", "alice@notacme.com")

    async def test_email_claimed_by_other_member(self, service, repository) -> None:
        repository.seed("2", "alice@acme.com", MemberState.VERIFIED)
        with pytest.raises(EmailAlreadyClaimed):
            await service.submit_email("1", "mallory", "ALICE@acme.com")
        assert "1" not in repository.records

    async def test_already_pending_sends_nothing(self, service, repository, email_sender) -> None:
        repository.seed("1", "alice@acme.com")
        assert await service.submit_email("1", "alice", "other@acme.com") is SubmitResult.ALREADY_PENDING
        email_sender.send.assert_not_awaited()
        assert repository.records["1"].email == "alice@acme.com"

    async def test_already_verified_is_noop(self, service, repository) -> None:
        seeded = repository.seed("1", "alice@acme.com", MemberState.VERIFIED)
        assert await service.submit_email("1", "alice", "anything") is SubmitResult.ALREADY_VERIFIED
        assert repository.records["1"] == seeded

    async def test_restricted_cannot_self_verify(self, service, repository) -> None:
        repository.seed("1", "alice@acme.com", MemberState.RESTRICTED)
        assert await service.submit_email("1", "alice", "new@acme.com") is SubmitResult.RESTRICTED

    async def test_mail_failure_keeps_pending_record(self, service, repository, email_sender) -> None:
        email_sender.send.side_effect = ExternalServiceError("relay down")

        assert await service.submit_email("1", "alice", "alice@acme.com") is SubmitResult.EMAIL_FAILED
        assert repository.records["1"].state is MemberState.PENDING

    async def test_concurrent_submissions_of_same_email(self, service, repository) -> None:
        """Exactly one of two members racing for one email gets it."""
        results = await asyncio.gather(
            service.submit_email("1", "alice", "shared@acme.com"),
            service.submit_email("2", "bob", "shared@acme.com"),
            return_exceptions=True,
        )

        sent = [r for r in results if r is SubmitResult.SENT]
        claimed = [r for r in results if isinstance(r, EmailAlreadyClaimed)]
        assert len(sent) == 1
        assert len(claimed) == 1
        assert [r.email for r in repository.records.values()] == ["shared@acme.com"]


class TestCompleteVerification:
    async def test_completes_with_team(self, service, repository, platform) -> None:
        repository.seed("1", "alice@acme.com", code="abc")

        outcome = await service.complete_verification("abc", "Engineering")

        assert outcome.record.state is MemberState.VERIFIED
        assert outcome.record.team_role == "Engineering"
        assert outcome.record.verified_at is not None
        assert not outcome.degraded
        assert platform.grant_role.await_args_list == [call("1", "role-member"), call("1", "role-eng")]
        platform.send_direct_message.assert_awaited_once_with(
            "1", messages.verification_complete("Engineering")
        )

    async def test_plain_mode_ignores_team(self, plain_service, repository) -> None:
        repository.seed("1", "alice@acme.com", code="abc")
        outcome = await plain_service.complete_verification("abc", "Whatever")
        assert outcome.record.team_role == ""

    async def test_unknown_code(self, service) -> None:
        with pytest.raises(NotFoundError):
            await service.complete_verification("nope", "Engineering")

    async def test_missing_team(self, service, repository) -> None:
        repository.seed("1", "alice@acme.com", code="abc")
        with pytest.raises(ValidationError):
            await service.complete_verification("abc", None)
        assert repository.records["1"].state is MemberState.PENDING

    async def test_unknown_team_leaves_record_pending(self, service, repository) -> None:
        repository.seed("1", "alice@acme.com", code="abc")
        with pytest.raises(UnknownTeamError):
            await service.complete_verification("abc", "Marketing")
        assert repository.records["1"].state is MemberState.PENDING

    async def test_code_is_single_use(self, service, repository) -> None:
        repository.seed("1", "alice@acme.com", code="abc")
        await service.complete_verification("abc", "Engineering")

        with pytest.raises(ConflictError):
            await service.complete_verification("abc", "Design")
        assert repository.records["1"].team_role == "Engineering"

    async def test_role_failure_still_verifies(self, service, repository, platform) -> None:
        repository.seed("1", "alice@acme.com", code="abc")
        platform.grant_role.side_effect = ExternalServiceError("missing permission")

        outcome = await service.complete_verification("abc", "Design")

        assert outcome.degraded
        assert repository.records["1"].state is MemberState.VERIFIED

    async def test_concurrent_completion_verifies_once(self, service, repository, platform) -> None:
        repository.seed("1", "alice@acme.com", code="abc")

        results = await asyncio.gather(
            service.complete_verification("abc", "Engineering"),
            service.complete_verification("abc", "Design"),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, ConflictError)) == 1
        assert platform.send_direct_message.await_count == 1


class TestManualVerify:
    async def test_creates_verified_record(self, service, repository, platform) -> None:
        outcome = await service.manual_verify("1", "alice", "Alice@acme.com", "Design")

        assert outcome.record.state is MemberState.VERIFIED
        assert outcome.record.email == "alice@acme.com"
        assert outcome.previous is None
        assert platform.grant_role.await_count == 2
        platform.send_direct_message.assert_awaited_once_with("1", messages.manually_verified("Design"))

    async def test_replaces_pending_record(self, service, repository) -> None:
        repository.seed("1", "old@acme.com", code="old-code")

        outcome = await service.manual_verify("1", "alice", "new@acme.com", "Design")

        assert outcome.record.email == "new@acme.com"
        assert outcome.previous.email == "old@acme.com"
        with pytest.raises(NotFoundError):
            await repository.get_by_code("old-code")

    async def test_same_email_as_own_pending_record(self, service, repository) -> None:
        repository.seed("1", "alice@acme.com")
        outcome = await service.manual_verify("1", "alice", "alice@acme.com", "Design")
        assert outcome.record.state is MemberState.VERIFIED

    async def test_replaces_restricted_record(self, service, repository) -> None:
        repository.seed("1", "alice@acme.com", MemberState.RESTRICTED, team_role="Design")
        outcome = await service.manual_verify("1", "alice", "alice@acme.com", "Engineering")
        assert outcome.record.team_role == "Engineering"

    async def test_already_verified(self, service, repository) -> None:
        repository.seed("1", "alice@acme.com", MemberState.VERIFIED)
        with pytest.raises(ConflictError, match="already verified"):
            await service.manual_verify("1", "alice", "alice@acme.com", "Design")

    async def test_email_held_by_someone_else(self, service, repository) -> None:
        repository.seed("2", "alice@acme.com")
        with pytest.raises(EmailAlreadyClaimed):
            await service.manual_verify("1", "alice", "alice@acme.com", "Design")

    async def test_unapproved_domain(self, service) -> None:
        with pytest.raises(DomainNotApproved):
            await service.manual_verify("1", "alice", "alice@evil.com", "Design")

    async def test_unknown_team(self, service, repository) -> None:
        with pytest.raises(UnknownTeamError):
            await service.manual_verify("1", "alice", "alice@acme.com", "Marketing")
        assert repository.records == {}


class TestModeratorTransitions:
    async def test_change_team_swaps_roles(self, service, repository, platform) -> None:
        repository.seed("1", "alice@acme.com", MemberState.VERIFIED, team_role="Engineering")

        outcome = await service.change_team("1", "Design")

        assert outcome.record.team_role == "Design"
        assert outcome.previous.team_role == "Engineering"
        platform.revoke_role.assert_awaited_once_with("1", "role-eng")
        platform.grant_role.assert_awaited_once_with("1", "role-design")
        platform.send_direct_message.assert_awaited_once_with(
            "1", messages.team_changed("Engineering", "Design")
        )

    async def test_change_team_not_verified(self, service, repository) -> None:
        repository.seed("1", "alice@acme.com")
        with pytest.raises(ConflictError):
            await service.change_team("1", "Design")

    async def test_change_team_unknown_member(self, service) -> None:
        with pytest.raises(NotFoundError):
            await service.change_team("1", "Design")

    async def test_restrict_keeps_team_and_removes_roles(self, service, repository, platform) -> None:
        repository.seed("1", "alice@acme.com", MemberState.VERIFIED, team_role="Design")

        outcome = await service.restrict("1", "spam")

        assert outcome.record.state is MemberState.RESTRICTED
        assert outcome.record.team_role == "Design"
        assert platform.revoke_role.await_args_list == [call("1", "role-member"), call("1", "role-design")]
        platform.send_direct_message.assert_awaited_once_with("1", messages.restricted_notice("spam"))

    async def test_restrict_loses_to_concurrent_team_change(self, service, repository, platform) -> None:
        repository.seed("1", "alice@acme.com", MemberState.VERIFIED, team_role="Design")
        guarded_transition = repository.transition

        async def team_change_first(platform_id, new_state, **kwargs):
            repository.transition = guarded_transition
            if new_state is MemberState.RESTRICTED:
                await service.change_team(platform_id, "Engineering")
            return await guarded_transition(platform_id, new_state, **kwargs)

        repository.transition = team_change_first

        with pytest.raises(ConflictError):
            await service.restrict("1", "spam")

        stored = repository.records["1"]
        assert stored.state is MemberState.VERIFIED
        assert stored.team_role == "Engineering"

        platform.revoke_role.reset_mock()
        await service.restrict("1", "spam")
        assert platform.revoke_role.await_args_list == [call("1", "role-member"), call("1", "role-eng")]

    async def test_restrict_then_unrestrict_round_trips(self, service, repository) -> None:
        original = repository.seed("1", "alice@acme.com", MemberState.VERIFIED, team_role="Design")

        await service.restrict("1", "spam")
        outcome = await service.unrestrict("1")

        assert outcome.record.state is MemberState.VERIFIED
        assert outcome.record.team_role == original.team_role
        assert outcome.record.verification_code == original.verification_code
        assert outcome.record.email == original.email

    async def test_restrict_twice(self, service, repository) -> None:
        repository.seed("1", "alice@acme.com", MemberState.RESTRICTED)
        with pytest.raises(ConflictError, match="already restricted"):
            await service.restrict("1")

    async def test_unrestrict_restores_roles(self, service, repository, platform) -> None:
        repository.seed("1", "alice@acme.com", MemberState.RESTRICTED, team_role="Design")
        before = repository.records["1"].verified_at

        outcome = await service.unrestrict("1")

        assert outcome.record.state is MemberState.VERIFIED
        assert outcome.record.team_role == "Design"
        assert outcome.record.verified_at > before
        assert platform.grant_role.await_args_list == [call("1", "role-member"), call("1", "role-design")]

    async def test_unrestrict_verified_member(self, service, repository) -> None:
        repository.seed("1", "alice@acme.com", MemberState.VERIFIED)
        with pytest.raises(ConflictError, match="not restricted"):
            await service.unrestrict("1")

    async def test_reset_deletes_and_revokes(self, service, repository, platform) -> None:
        repository.seed("1", "alice@acme.com", MemberState.VERIFIED, team_role="Design")

        await service.reset("1")

        assert "1" not in repository.records
        assert platform.revoke_role.await_count == 2
        platform.send_direct_message.assert_awaited_once_with("1", messages.RESET_NOTICE)

    async def test_reset_frees_email_for_resubmission(self, service, repository) -> None:
        repository.seed("1", "alice@acme.com", MemberState.VERIFIED)
        await service.reset("1")
        assert await service.submit_email("1", "alice", "alice@acme.com") is SubmitResult.SENT

    async def test_reset_pending_revokes_nothing(self, service, repository, platform) -> None:
        repository.seed("1", "alice@acme.com")
        await service.reset("1")
        platform.revoke_role.assert_not_awaited()

    async def test_reset_unknown(self, service) -> None:
        with pytest.raises(NotFoundError):
            await service.reset("1")

    async def test_purge_by_email(self, service, repository, platform) -> None:
        repository.seed("1", "alice@acme.com", MemberState.VERIFIED)

        outcome = await service.purge(email=" ALICE@acme.com ")

        assert outcome.record.platform_id == "1"
        assert repository.records == {}
        with pytest.raises(NotFoundError):
            await repository.get_by_platform_id("1")
        with pytest.raises(NotFoundError):
            await repository.get_by_email("alice@acme.com")
        with pytest.raises(NotFoundError):
            await repository.get_by_code(outcome.record.verification_code)
        platform.send_direct_message.assert_awaited_once_with("1", messages.PURGE_NOTICE)

    async def test_purge_prefers_platform_id(self, service, repository) -> None:
        repository.seed("1", "alice@acme.com")
        repository.seed("2", "bob@acme.com")

        await service.purge(platform_id="1", email="bob@acme.com")

        assert list(repository.records) == ["2"]

    async def test_purge_requires_a_key(self, service) -> None:
        with pytest.raises(ValidationError):
            await service.purge()

    async def test_purge_unknown_email(self, service) -> None:
        with pytest.raises(NotFoundError):
            await service.purge(email="ghost@acme.com")

    async def test_restrict_racing_reset(self, service, repository) -> None:
        """Restrict against a deleted member fails instead of resurrecting it."""
        repository.seed("1", "alice@acme.com", MemberState.VERIFIED)

        results = await asyncio.gather(service.reset("1"), service.restrict("1"), return_exceptions=True)

        assert "1" not in repository.records
        assert isinstance(results[1], NotFoundError)


class TestReporting:
    async def test_stats(self, service, repository) -> None:
        repository.seed("1", "a@acme.com")
        repository.seed("2", "b@acme.com", MemberState.VERIFIED)
        repository.seed("3", "c@acme.com", MemberState.RESTRICTED)

        stats = await service.stats()

        assert (stats.total, stats.verified, stats.pending, stats.restricted) == (3, 1, 1, 1)

    async def test_list_members_newest_first(self, service, repository) -> None:
        repository.seed("1", "a@acme.com")
        repository.seed("2", "b@acme.com")
        assert [r.platform_id for r in await service.list_members()] == ["2", "1"]

    async def test_verification_url(self, service) -> None:
        service.base_url = "https://verify.example.com/"
        assert service.verification_url("abc") == "https://verify.example.com/verify?code=abc"
