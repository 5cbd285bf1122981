"""Tests for password reuse history and strength scoring."""

from __future__ import annotations

from api.services.password_history import HISTORY_DEPTH, validate_password_strength
from api.services.security_audit import AuditQuery
from warden.models.enums import SecurityEventType


class TestPasswordStrength:
    def test_strong_password(self):
        result = validate_password_strength("Tr0ub4dor&Horse")
        assert result.is_valid is True
        assert result.score == 5
        assert result.feedback == []

    def test_short_password(self):
        result = validate_password_strength("Ab1!")
        assert result.is_valid is False
        assert "Password must be at least 8 characters long" in result.feedback

    def test_missing_character_classes(self):
        result = validate_password_strength("alllowercaseletters")
        assert result.is_valid is False
        assert "Password must contain uppercase letters" in result.feedback
        assert "Password must contain numbers" in result.feedback
        assert "Password must contain special characters" in result.feedback

    def test_patterns_are_penalised(self):
        result = validate_password_strength("Passsword123!")
        assert result.is_valid is False
        assert "Avoid repeating characters" in result.feedback
        assert "Avoid common sequences" in result.feedback
        assert 0 <= result.score <= 5


class TestPasswordHistory:
    async def test_reuse_detected(self, services):
        await services.passwords.save("alice", "Old-Passw0rd!")

        assert await services.passwords.is_reused("alice", "Old-Passw0rd!") is True
        assert await services.passwords.is_reused("alice", "New-Passw0rd!") is False
        assert await services.passwords.is_reused("bob", "Old-Passw0rd!") is False

    async def test_history_is_bounded(self, services, clock):
        for i in range(HISTORY_DEPTH + 2):
            await services.passwords.save("alice", f"Passw0rd-{i}!")
            clock.advance(seconds=1)

        assert await services.passwords.count("alice") == HISTORY_DEPTH
        assert await services.passwords.is_reused("alice", "Passw0rd-0!") is False
        assert await services.passwords.is_reused("alice", f"Passw0rd-{HISTORY_DEPTH + 1}!")

    async def test_save_is_audited_and_clear_erases(self, services):
        await services.passwords.save("alice", "Old-Passw0rd!")

        _, total = await services.audit.list_events(
            AuditQuery(principal_id="alice", event_types=[SecurityEventType.PASSWORD_CHANGED])
        )
        assert total == 1
        assert await services.passwords.clear("alice") == 1
        assert await services.passwords.count("alice") == 0
