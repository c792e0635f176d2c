"""Tests for query domain models."""

import pytest

from knowledgeoracle.models.query import (
    MAX_ATTACHMENTS,
    Attachment,
    ConversationTurn,
    Intent,
    QualityTier,
    Query,
    cap_history,
    normalize_tag,
    normalize_tags,
)


class TestNormalizeTag:
    def test_strips_hash_and_folds(self):
        assert normalize_tag("#Manutenção") == "manutencao"

    def test_too_short(self):
        assert normalize_tag("#ab") == ""

    def test_too_long(self):
        assert normalize_tag("x" * 51) == ""

    def test_replaces_separators(self):
        assert normalize_tag("linha viva") == "linha_viva"

    def test_normalize_tags_dedupes_and_splits_strings(self):
        assert normalize_tags("#NR10, nr10,spda") == ("nr10", "spda")

    def test_normalize_tags_caps(self):
        tags = normalize_tags([f"tag{i:02d}" for i in range(40)])
        assert len(tags) == 24


class TestQuery:
    def test_empty_text_raises(self):
        with pytest.raises(ValueError):
            Query(raw_text="  ")

    def test_coerces_enums_from_strings(self):
        q = Query(raw_text="hello", intent="oracle", quality_tier="deep")
        assert q.intent == Intent.ORACLE
        assert q.quality_tier == QualityTier.DEEP

    def test_invalid_intent_raises(self):
        with pytest.raises(ValueError):
            Query(raw_text="hello", intent="gossip")

    def test_normalizes_tags_and_focus(self):
        q = Query(raw_text="hello", topic_tags=("#SPDA", "spda"), focus="  " + "f" * 200)
        assert q.topic_tags == ("spda",)
        assert len(q.focus) == 140

    def test_attachments_deduped_and_capped(self):
        items = [Attachment(url=f"https://files/{i}.pdf") for i in range(8)]
        items.insert(1, Attachment(url="https://files/0.pdf", name="dup"))
        q = Query(raw_text="hello", attachments=tuple(items))
        assert len(q.attachments) == MAX_ATTACHMENTS
        assert [a.url for a in q.attachments][:2] == ["https://files/0.pdf", "https://files/1.pdf"]

    def test_attachment_requires_url(self):
        with pytest.raises(ValueError):
            Attachment(url="")


class TestConversationHistory:
    def test_unknown_role_becomes_user(self):
        assert ConversationTurn(role="system", content="x").role == "user"

    def test_cap_history_keeps_last_non_empty(self):
        turns = [ConversationTurn("user", str(i)) for i in range(5)]
        turns.append(ConversationTurn("assistant", "   "))
        capped = cap_history(turns, 3)
        assert [t.content for t in capped] == ["2", "3", "4"]

    def test_cap_history_zero(self):
        assert cap_history([ConversationTurn("user", "x")], 0) == []
