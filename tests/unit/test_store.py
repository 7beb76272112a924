"""Tests for prismgen.core.store - SQLite generations, feedback and stats."""

import pytest

from prismgen.core.models import FeedbackRecord, GenerationRecord, TagUsage
from prismgen.core.store import GenerationStore

SERENE = TagUsage(name="Serene", category="mood", value="serene")
NOIR = TagUsage(name="Noir", category="art_style", value="film noir")


@pytest.fixture
def store(temp_dir):
    return GenerationStore(temp_dir / "nested" / "prism.db")


def save(store, prompt="a cat", urls=("https://x.test/0",), tags=()):
    return store.save_generation(
        GenerationRecord(
            prompt=prompt,
            model="fast-model",
            cost=0.003,
            image_urls=list(urls),
            tags_used=list(tags),
        )
    )


@pytest.mark.unit
class TestGenerations:
    def test_creates_parent_directory(self, store):
        assert store.db_path.exists()

    def test_save_and_get(self, store):
        generation_id = save(store, tags=[SERENE])
        record = store.get_generation(generation_id)

        assert record["prompt"] == "a cat"
        assert record["image_urls"] == ["https://x.test/0"]
        assert record["tags_used"] == [SERENE.to_dict()]
        assert record["is_public"] is True
        assert record["status"] == "completed"

    def test_get_missing(self, store):
        assert store.get_generation("nope") is None

    def test_list_newest_first_with_feedback(self, store):
        first = save(store, prompt="first")
        second = save(store, prompt="second")
        store.submit_feedback(FeedbackRecord(generation_id=first, feedback_type="like"))

        records = store.list_generations()
        assert [r["id"] for r in records] == [second, first]
        assert records[0]["feedback_type"] is None
        assert records[1]["feedback_type"] == "like"

    def test_list_limit(self, store):
        for i in range(3):
            save(store, prompt=f"p{i}")
        assert len(store.list_generations(limit=2)) == 2


@pytest.mark.unit
class TestStatistics:
    def test_prompt_counter(self, store):
        store.update_prompt_stats("a cat")
        store.update_prompt_stats("a cat")
        store.update_prompt_stats("a dog")

        popular = store.popular_prompts()
        assert popular[0]["prompt_text"] == "a cat"
        assert popular[0]["usage_count"] == 2
        assert len(popular) == 2

    def test_tag_counter(self, store):
        store.update_tag_stats([SERENE, NOIR])
        store.update_tag_stats([SERENE])

        assert store.get_tag_stats("Serene")["usage_count"] == 2
        assert store.get_tag_stats("Noir")["category"] == "art_style"
        store.update_tag_stats([])

    def test_recommendations(self, store):
        store.update_tag_stats([SERENE, NOIR])
        store.update_tag_stats([SERENE])

        recommended = store.recommended_tags()
        assert [r["tag"]["tag_name"] for r in recommended] == ["Serene", "Noir"]
        assert recommended[0]["reason"] == "Popular tag (2 uses)"

        assert store.recommended_tags(category="art_style")[0]["tag"]["tag_name"] == "Noir"
        assert [r["tag"]["tag_name"] for r in store.recommended_tags(exclude=["Serene"])] == [
            "Noir"
        ]
        assert len(store.recommended_tags(limit=1)) == 1

    def test_success_rate_boosts_recommendation(self, store):
        store.update_tag_stats([SERENE])
        generation_id = save(store, tags=[SERENE])
        store.submit_feedback(
            FeedbackRecord(
                generation_id=generation_id,
                feedback_type="like",
                image_urls=["https://x.test/0"],
                tags_used=["Serene"],
            )
        )

        stats = store.get_tag_stats("Serene")
        assert stats["success_rate"] == 1.0
        assert stats["average_rating"] == 5.0
        assert "high success rate" in store.recommended_tags()[0]["reason"]


@pytest.mark.unit
class TestFeedback:
    def test_create_update_delete(self, store):
        generation_id = save(store)

        store.submit_feedback(FeedbackRecord(generation_id=generation_id, feedback_type="like"))
        assert store.get_feedback(generation_id) == "like"

        store.submit_feedback(FeedbackRecord(generation_id=generation_id, feedback_type="dislike"))
        assert store.get_feedback(generation_id) == "dislike"

        store.submit_feedback(FeedbackRecord(generation_id=generation_id, feedback_type=None))
        assert store.get_feedback(generation_id) is None

    def test_delete_without_feedback_is_noop(self, store):
        generation_id = save(store)
        store.submit_feedback(FeedbackRecord(generation_id=generation_id, feedback_type=None))
        assert store.get_feedback(generation_id) is None

    def test_feedback_scoped_to_client(self, temp_dir):
        alice = GenerationStore(temp_dir / "prism.db", client_id="alice")
        bob = GenerationStore(temp_dir / "prism.db", client_id="bob")
        generation_id = save(alice)

        alice.submit_feedback(FeedbackRecord(generation_id=generation_id, feedback_type="like"))
        assert alice.get_feedback(generation_id) == "like"
        assert bob.get_feedback(generation_id) is None
