"""
Locust Load Test Suite

Seed first (writes bearer tokens and ids):
  cd backend && python -m scripts.seed --users 200 --capacity 10 --out locust/seed.json

Run scenarios:
  locust -f locust/locustfile.py --tags concurrency  # Test overbooking
  locust -f locust/locustfile.py --tags downloads    # Test download limit race
  locust -f locust/locustfile.py --tags throughput   # Test cache
  locust -f locust/locustfile.py --tags edge         # Test bad input
  locust -f locust/locustfile.py                     # All tests

SEED_FILE overrides the seed path.
"""

import itertools
import json
import os
import random
import threading

from locust import HttpUser, task, between, tag, events

SEED = {}
_token_cycle = None
_token_lock = threading.Lock()


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    """Load the seeded event, product and bearer tokens."""
    global _token_cycle
    path = os.environ.get("SEED_FILE", os.path.join(os.path.dirname(__file__), "seed.json"))
    with open(path) as fh:
        SEED.update(json.load(fh))
    _token_cycle = itertools.cycle(SEED["tokens"])
    print(
        f"\nSeed: event {SEED['event_id']} ({SEED['capacity']} spots), "
        f"product {SEED['product_id']} (limit {SEED['download_limit']}), "
        f"{len(SEED['tokens'])} users\n"
    )


@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    if SEED:
        print("\nVerify no overbooking:")
        print(f"  SELECT capacity, available_spots FROM events WHERE id = {SEED['event_id']};")
        print(f"  SELECT SUM(attendees) FROM bookings WHERE event_id = {SEED['event_id']} AND status <> 'cancelled';")
        print("Verify download limits:")
        print(
            "  SELECT user_id, COUNT(*) FROM download_logs "
            f"WHERE digital_product_id = {SEED['product_id']} GROUP BY user_id "
            f"HAVING COUNT(*) > {SEED['download_limit']};  -- expect no rows\n"
        )


def next_headers() -> dict:
    with _token_lock:
        token = next(_token_cycle)
    return {"Authorization": f"Bearer {token}"}


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - many users, few spots

    Run: locust -f locust/locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test: capacity - available_spots == SUM(attendees) of live bookings,
    and available_spots >= 0.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = next_headers()

    @tag("concurrency")
    @task
    def book_limited_spots(self):
        """All users fight for the same spots."""
        with self.client.post("/api/v1/bookings/",
            json={"event_id": SEED["event_id"], "attendees": 1},
            headers=self.headers,
            name="/api/v1/bookings/ [contested]",
            catch_response=True
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: sold out or already booked
            elif resp.status_code == 503:
                resp.success()  # Expected under contention: lock timeout, retryable
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class DownloadUser(HttpUser):
    """
    TEST 2: Download limit - every user fires bursts at one purchase

    Run: locust -f locust/locustfile.py --tags downloads -u 100 -r 50 --run-time 30s

    After test: no user has more download_logs rows than the product's limit.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = next_headers()
        self.link = None

    @tag("downloads")
    @task
    def download(self):
        if self.link is None:
            resp = self.client.post(f"/api/v1/products/{SEED['product_id']}/download-link",
                headers=self.headers)
            if resp.status_code != 200:
                return
            self.link = resp.json()["url"]

        with self.client.get(self.link,
            headers=self.headers,
            allow_redirects=False,
            name="/api/v1/products/{id}/download",
            catch_response=True
        ) as resp:
            if resp.status_code == 302:
                resp.success()
            elif resp.status_code == 403:
                resp.success()  # Expected: limit reached
                if resp.json()["error"]["code"] != "download_limit_exceeded":
                    self.link = None
            elif resp.status_code == 503:
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 3: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locust/locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: Stop Redis, run again

    Compare avg response time, requests/sec and P95/P99 latency.
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def list_events_cached(self):
        """Hammer the cached endpoint."""
        page = random.randint(1, 5)
        self.client.get(f"/api/v1/events/?page={page}&page_size=20",
            name="/api/v1/events/ [cached]")

    @tag("throughput", "read")
    @task(3)
    def get_event_detail(self):
        self.client.get(f"/api/v1/events/{SEED['event_id']}",
            name="/api/v1/events/{id}")

    @tag("throughput", "read")
    @task(3)
    def check_capacity(self):
        self.client.get(f"/api/v1/events/{SEED['event_id']}/capacity?requested=1",
            name="/api/v1/events/{id}/capacity")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 4: Edge cases - Bad input handling

    Run: locust -f locust/locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = next_headers()

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def invalid_event_id(self):
        with self.client.post("/api/v1/bookings/",
            json={"event_id": 999999, "attendees": 1},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def zero_attendees(self):
        with self.client.post("/api/v1/bookings/",
            json={"event_id": SEED["event_id"], "attendees": 0},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def huge_attendees(self):
        with self.client.post("/api/v1/bookings/",
            json={"event_id": SEED["event_id"], "attendees": 999999},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [400, 409, 422])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/bookings/",
            data="not json at all",
            headers=self.headers,
            catch_response=True
        ) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post("/api/v1/bookings/",
            json={"event_id": SEED["event_id"], "attendees": 1},
            catch_response=True
        ) as resp:
            self._expect(resp, [401])

    @tag("edge")
    @task
    def forged_download_token(self):
        with self.client.get(f"/api/v1/products/{SEED['product_id']}/download?token=Zm9vOmJhcg.YmFk",
            headers=self.headers,
            allow_redirects=False,
            name="/api/v1/products/{id}/download [forged]",
            catch_response=True
        ) as resp:
            self._expect(resp, [403])
