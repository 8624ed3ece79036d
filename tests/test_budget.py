from mapsearch.budget import CrawlBudgetTracker


class FakeStore:
    def __init__(self):
        self.data = {}

    def put_json(self, key, payload):
        self.data[key] = payload

    def get_json(self, key):
        return self.data.get(key)


def test_unlimited_budget_always_has_room():
    budget = CrawlBudgetTracker()
    for _ in range(1000):
        assert budget.set_enqueued("coffee") is True
    assert budget.can_enqueue_more("coffee")
    assert budget.can_scrape_more("coffee")


def test_set_enqueued_reports_when_cap_is_reached():
    budget = CrawlBudgetTracker(max_crawled_places=3)
    assert budget.set_enqueued("a") is True
    assert budget.set_enqueued("b") is True
    assert budget.set_enqueued("a") is False
    assert not budget.can_enqueue_more()
    assert not budget.can_enqueue_more("c")
    assert budget.enqueued_for("a") == 2


def test_per_search_cap_is_independent_per_key():
    budget = CrawlBudgetTracker(max_crawled_places_per_search=2)
    budget.set_enqueued("pizza")
    budget.set_enqueued("pizza")
    assert not budget.can_enqueue_more("pizza")
    assert budget.can_enqueue_more("sushi")
    assert budget.can_enqueue_more()


def test_release_enqueued_gives_the_slot_back_and_never_goes_negative():
    budget = CrawlBudgetTracker(max_crawled_places=1)
    budget.set_enqueued("a")
    assert not budget.can_enqueue_more("a")
    budget.release_enqueued("a")
    assert budget.can_enqueue_more("a")
    budget.release_enqueued("a")
    assert budget.enqueued_total == 0
    assert budget.enqueued_for("a") == 0


def test_scrape_counters_are_separate_from_enqueue_counters():
    budget = CrawlBudgetTracker(max_crawled_places=2)
    budget.set_enqueued("a")
    budget.set_enqueued("a")
    assert not budget.can_enqueue_more("a")
    assert budget.can_scrape_more("a")
    assert budget.set_scraped("a") is True
    assert budget.set_scraped("a") is False


def test_persist_and_restore_round_trip():
    store = FakeStore()
    budget = CrawlBudgetTracker(max_crawled_places=10, max_crawled_places_per_search=5)
    budget.set_enqueued("a")
    budget.set_enqueued("b")
    budget.set_scraped("b")
    budget.persist(store)

    restored = CrawlBudgetTracker(max_crawled_places=10, max_crawled_places_per_search=5)
    assert restored.restore(store) is True
    assert restored.enqueued_total == 2
    assert restored.scraped_total == 1
    assert restored.enqueued_for("b") == 1
    assert restored.per_search["b"].scraped == 1


def test_restore_without_state_is_a_noop():
    budget = CrawlBudgetTracker()
    assert budget.restore(FakeStore()) is False
    assert budget.enqueued_total == 0
