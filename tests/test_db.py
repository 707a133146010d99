import pytest

from news_pulse.db import Database
from news_pulse.errors import StorageError
from news_pulse.models import Preferences, User


def test_create_and_get_article(temp_db, make_article):
    """Test storing an article and reading it back with content."""
    created = make_article(id="a1", title="Chips", tags=["ai", "chips", "ai"], topics=["semiconductors"])

    assert created.tags == ["ai", "chips"]
    assert created.scraped_at == created.created_at

    article = temp_db.get_article("a1")
    assert article is not None
    assert article.title == "Chips"
    assert article.content == "Full text of article 1."
    assert article.tags == ["ai", "chips"]
    assert article.ai_analysis.topics == ["semiconductors"]
    assert article.engagement.views == 0


def test_get_missing_article(temp_db):
    assert temp_db.get_article("nope") is None


def test_find_active_omits_content_and_inactive(temp_db, make_article):
    """Test that list queries skip inactive articles and project out content."""
    make_article(id="a1")
    make_article(id="a2", is_active=False)

    articles = temp_db.find_active_articles()
    assert [a.id for a in articles] == ["a1"]
    assert articles[0].content is None


def test_find_active_latest_first(temp_db, make_article):
    for i in range(5):
        make_article(id=f"a{i}")

    articles = temp_db.find_active_articles(sort="latest", limit=3)
    assert [a.id for a in articles] == ["a4", "a3", "a2"]

    page_two = temp_db.find_active_articles(sort="latest", limit=3, skip=3)
    assert [a.id for a in page_two] == ["a1", "a0"]


def test_find_active_category_or_tag(temp_db, make_article):
    """Test that category and tag filters widen each other."""
    make_article(id="tech", category="technology")
    make_article(id="tagged", category="sports", tags=["ai"])
    make_article(id="other", category="health", tags=["fitness"])

    articles = temp_db.find_active_articles(categories=["technology"], tags=["ai"])
    assert {a.id for a in articles} == {"tech", "tagged"}


def test_find_active_exclusion_and_ids(temp_db, make_article):
    for i in range(4):
        make_article(id=f"a{i}")

    excluded = temp_db.find_active_articles(exclude_ids=["a1", "a2"])
    assert {a.id for a in excluded} == {"a0", "a3"}

    assert temp_db.find_active_articles(ids=[]) == []
    assert {a.id for a in temp_db.find_active_articles(ids=["a0", "a3", "missing"])} == {"a0", "a3"}


def test_find_active_search(temp_db, make_article):
    make_article(id="a1", title="Quantum leap in computing")
    make_article(id="a2", title="Football", tags=["Quantum"])
    make_article(id="a3", title="Elections", topics=["quantum policy"])
    make_article(id="a4", title="Weather")

    found = temp_db.find_active_articles(search="quantum")
    assert {a.id for a in found} == {"a1", "a2", "a3"}
    assert temp_db.count_active_articles(search="quantum") == 3


def test_search_escapes_wildcards(temp_db, make_article):
    make_article(id="a1", title="100% growth")
    make_article(id="a2", title="1000 growth")

    found = temp_db.find_active_articles(search="100%")
    assert [a.id for a in found] == ["a1"]


def test_find_active_unknown_sort(temp_db):
    with pytest.raises(ValueError, match="Unknown sort"):
        temp_db.find_active_articles(sort="random")


def test_trending_sort(temp_db, make_article):
    make_article(id="a1")
    make_article(id="a2")
    make_article(id="a3")
    temp_db.increment_engagement("a2", "views", 5)
    temp_db.increment_engagement("a3", "views", 5)
    temp_db.increment_engagement("a3", "likes", 1)

    articles = temp_db.find_active_articles(sort="trending")
    assert [a.id for a in articles] == ["a3", "a2", "a1"]


def test_count_active_articles(temp_db, make_article):
    make_article(category="technology")
    make_article(category="technology")
    make_article(category="sports")
    make_article(category="technology", is_active=False)

    assert temp_db.count_active_articles() == 3
    assert temp_db.count_active_articles(categories=["technology"]) == 2


def test_deactivate_article(temp_db, make_article):
    make_article(id="a1")
    assert temp_db.deactivate_article("a1") is True
    assert temp_db.find_active_articles() == []
    assert temp_db.get_article("a1").is_active is False
    assert temp_db.deactivate_article("missing") is False


def test_increment_engagement(temp_db, make_article):
    make_article(id="a1")
    assert temp_db.increment_engagement("a1", "views") is True
    assert temp_db.increment_engagement("a1", "shares", 3) is True

    engagement = temp_db.get_engagement("a1")
    assert engagement.views == 1
    assert engagement.shares == 3


def test_increment_engagement_rejects_bad_input(temp_db, make_article):
    make_article(id="a1")
    with pytest.raises(ValueError):
        temp_db.increment_engagement("a1", "average_rating")
    with pytest.raises(ValueError, match="never decrease"):
        temp_db.increment_engagement("a1", "views", -1)
    assert temp_db.increment_engagement("missing", "views") is False


def test_rating_running_mean_from_zero(temp_db, make_article, make_user):
    """Ratings 4, 5, 3 from an unrated article average to 4.0."""
    make_article(id="a1")
    make_user("reader")

    for rating in (4, 5, 3):
        assert temp_db.apply_rating("reader", "a1", rating) is True

    engagement = temp_db.get_engagement("a1")
    assert engagement.average_rating == pytest.approx(4.0)
    assert engagement.total_ratings == 3


def test_rating_running_mean_from_existing(temp_db, make_article, make_user):
    """A 5 on (avg 3.0, 2 ratings) yields (3*2+5)/3."""
    from news_pulse.models import Engagement

    make_article(id="a1", engagement=Engagement(average_rating=3.0, total_ratings=2))
    make_user("reader")

    temp_db.apply_rating("reader", "a1", 5)

    engagement = temp_db.get_engagement("a1")
    assert engagement.average_rating == pytest.approx(11 / 3)
    assert engagement.total_ratings == 3


def test_rating_logged_in_read_history(temp_db, make_article, make_user):
    make_article(id="a1")
    make_user("reader")
    temp_db.apply_rating("reader", "a1", 4)

    history = temp_db.get_read_history("reader")
    assert len(history) == 1
    assert history[0].article_id == "a1"
    assert history[0].rating == 4


def test_rating_missing_article(temp_db, make_user):
    make_user("reader")
    assert temp_db.apply_rating("reader", "missing", 4) is False
    assert temp_db.get_read_history("reader") == []


def test_reaction_moves_between_sets(temp_db, make_article, make_user):
    """Test that like and dislike are mutually exclusive."""
    make_article(id="a1")
    make_user("reader")

    temp_db.apply_reaction("reader", "a1", "dislike")
    assert temp_db.get_disliked_article_ids("reader") == ["a1"]

    temp_db.apply_reaction("reader", "a1", "like")
    assert temp_db.get_liked_article_ids("reader") == ["a1"]
    assert temp_db.get_disliked_article_ids("reader") == []

    engagement = temp_db.get_engagement("a1")
    assert engagement.likes == 1
    assert engagement.dislikes == 1


def test_repeat_like_keeps_set_but_counts(temp_db, make_article, make_user):
    make_article(id="a1")
    make_user("reader")

    temp_db.apply_reaction("reader", "a1", "like")
    temp_db.apply_reaction("reader", "a1", "like")

    assert temp_db.get_liked_article_ids("reader") == ["a1"]
    assert temp_db.get_engagement("a1").likes == 2


def test_reaction_missing_article(temp_db, make_user):
    make_user("reader")
    assert temp_db.apply_reaction("reader", "missing", "like") is False
    assert temp_db.get_liked_article_ids("reader") == []


def test_get_user_with_behavior(temp_db, make_article, make_user):
    make_article(id="a1")
    make_article(id="a2")
    make_user("reader", preferences=Preferences(categories=["science"]))

    temp_db.apply_reaction("reader", "a1", "like")
    temp_db.apply_reaction("reader", "a2", "dislike")
    temp_db.append_read("reader", "a1", time_spent=90)
    temp_db.append_search("reader", "mars rover")

    user = temp_db.get_user("reader")
    assert user.email == "reader@example.com"
    assert user.preferences.categories == ["science"]
    assert user.behavior.liked_article_ids == ["a1"]
    assert user.behavior.disliked_article_ids == ["a2"]
    assert user.behavior.read_history[0].time_spent == 90
    assert user.behavior.search_history[0].query == "mars rover"


def test_get_missing_user(temp_db):
    assert temp_db.get_user("ghost") is None
    assert temp_db.user_exists("ghost") is False


def test_find_neighbor_likes(temp_db, make_article, make_user):
    for article_id in ("a0", "a1", "a2", "a3"):
        make_article(id=article_id)
    for name in ("target", "n1", "n2", "stranger"):
        make_user(name)

    temp_db.apply_reaction("target", "a0", "like")
    for article_id in ("a0", "a1", "a2"):
        temp_db.apply_reaction("n1", article_id, "like")
    for article_id in ("a0", "a3"):
        temp_db.apply_reaction("n2", article_id, "like")
    temp_db.apply_reaction("stranger", "a3", "like")

    neighbors = temp_db.find_neighbor_likes("target")
    assert set(neighbors) == {"n1", "n2"}
    assert neighbors["n1"] == ["a0", "a1", "a2"]
    assert neighbors["n2"] == ["a0", "a3"]


def test_clear_behavior(temp_db, make_article, make_user):
    make_article(id="a1")
    make_user("reader")
    temp_db.apply_reaction("reader", "a1", "like")
    temp_db.append_read("reader", "a1")
    temp_db.append_search("reader", "budget")

    temp_db.clear_behavior("reader")

    behavior = temp_db.get_user("reader").behavior
    assert behavior.liked_article_ids == []
    assert behavior.disliked_article_ids == []
    assert behavior.read_history == []
    assert behavior.search_history == []
    # Engagement counters are not rolled back
    assert temp_db.get_engagement("a1").likes == 1


def test_read_history_pagination(temp_db, make_article, make_user):
    make_user("reader")
    for i in range(5):
        make_article(id=f"a{i}")
        temp_db.append_read("reader", f"a{i}")

    first = temp_db.get_read_history("reader", limit=2)
    assert [e.article_id for e in first] == ["a4", "a3"]
    assert temp_db.count_read_history("reader") == 5


def test_update_preferences(temp_db, make_user):
    make_user("reader")
    assert temp_db.update_preferences("reader", Preferences(sources=["Wire"])) is True
    assert temp_db.get_user("reader").preferences.sources == ["Wire"]


def test_database_persistence(temp_db, make_article, make_user):
    """Test that data persists across Database instances."""
    make_article(id="a1")
    make_user("reader")
    temp_db.apply_reaction("reader", "a1", "like")

    db2 = Database(temp_db.db_path)
    assert db2.get_liked_article_ids("reader") == ["a1"]
    assert db2.get_engagement("a1").likes == 1
    db2.close()


def test_sqlite_errors_become_storage_errors(tmp_path):
    db = Database(str(tmp_path / "test.db"))
    db.close()

    with pytest.raises(StorageError, match="find_active_articles"):
        db.find_active_articles()


def test_duplicate_url_rejected(temp_db, make_article):
    make_article(id="a1", url="https://news.example.com/same")
    with pytest.raises(ValueError, match="already exists"):
        make_article(id="a2", url="https://news.example.com/same")


def test_duplicate_user_rejected(temp_db, make_user):
    make_user("reader")
    with pytest.raises(ValueError, match="User already exists"):
        temp_db.create_user(User(username="other", email="READER@example.com"))
