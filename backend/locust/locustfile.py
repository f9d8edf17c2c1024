"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Test double booking
  locust -f locustfile.py --tags throughput   # Test cache
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests

Tokens are signed locally with the API's SECRET_KEY (same env var), so no
identity service is needed during a load test.
"""

import os
import random
from datetime import date, datetime, timedelta, timezone

from jose import jwt
from locust import HttpUser, task, between, tag, events

SECRET_KEY = os.getenv("SECRET_KEY", "super-secret-key-change-in-production")
COURTS = ["Court 1", "Court 2", "Court 3", "Court 4", "Court 5", "Court 6", "Court 7", "Beach 1", "Beach 2"]

# Shared state
BOOKING_IDS = []
RACE_DAY = (date.today() + timedelta(days=60)).isoformat()


def token_for(role: str) -> str:
    claims = {
        "sub": f"load-{role}-{random.randint(10000, 99999)}",
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(hours=2),
    }
    return jwt.encode(claims, SECRET_KEY, algorithm="HS256")


def headers_for(role: str) -> dict:
    return {"Authorization": f"Bearer {token_for(role)}"}


def random_day() -> str:
    return (date.today() + timedelta(days=random.randint(1, 30))).isoformat()


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"Race day for the concurrency test: {RACE_DAY}")
    print("=" * 60)


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - 100 coaches fight for Court 1 at 18:00 on one day

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify no two slots overlap:
      SELECT a.booking_id, b.booking_id FROM booking_slots a
      JOIN booking_slots b ON a.resource = b.resource AND a.date = b.date
       AND a.booking_id < b.booking_id
       AND a.start_minute < b.end_minute AND b.start_minute < a.end_minute;
    Should return no rows
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = headers_for("manager")

    @tag("concurrency")
    @task
    def book_contested_court(self):
        """Everybody wants the evening slot; start times jitter so intervals overlap partially."""
        minute = random.choice([0, 15, 30, 45])
        with self.client.post(
            "/api/v1/bookings/",
            json={
                "resources": ["Court 1"],
                "date": RACE_DAY,
                "start_time": f"18:{minute:02d}",
                "duration_minutes": 60,
                "kind": "match",
            },
            headers=self.headers,
            name="/api/v1/bookings/ [contested]",
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: court taken or concurrent update
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false, run again

    Compare avg response time, requests/sec, P95/P99 latency.
    """
    wait_time = between(0.1, 0.5)

    def on_start(self):
        self.headers = headers_for("member")

    @tag("throughput", "read")
    @task(10)
    def day_listing_cached(self):
        self.client.get(
            "/api/v1/bookings/",
            params={"date": random_day()},
            headers=self.headers,
            name="/api/v1/bookings/?date= [cached]",
        )

    @tag("throughput", "read")
    @task(3)
    def court_availability(self):
        self.client.get(
            f"/api/v1/courts/{random.choice(COURTS)}/availability",
            params={"date": random_day()},
            headers=self.headers,
            name="/api/v1/courts/{court}/availability",
        )

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = headers_for("admin")

    def _expect(self, payload, expected, name):
        with self.client.post(
            "/api/v1/bookings/", json=payload, headers=self.headers, name=name, catch_response=True
        ) as resp:
            if resp.status_code in expected:
                resp.success()
            else:
                resp.failure(f"Expected {expected}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_court(self):
        self._expect(
            {"resources": ["Centre Court"], "date": random_day(), "start_time": "10:00"},
            [422], "edge: unknown court",
        )

    @tag("edge")
    @task
    def zero_duration(self):
        self._expect(
            {"resources": ["Court 2"], "date": random_day(), "start_time": "10:00", "duration_minutes": 0},
            [422], "edge: zero duration",
        )

    @tag("edge")
    @task
    def after_closing(self):
        self._expect(
            {"resources": ["Court 2"], "date": random_day(), "start_time": "21:30", "duration_minutes": 60},
            [422], "edge: after closing",
        )

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post(
            "/api/v1/bookings/", data="not json at all", headers=self.headers, catch_response=True
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"resources": ["Court 1"], "date": random_day(), "start_time": "10:00"},
            catch_response=True,
        ) as resp:
            if resp.status_code == 401:
                resp.success()
            else:
                resp.failure(f"Expected 401, got {resp.status_code}")


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Simulates a club day: mostly looking at the grid, some bookings,
    coaches dragging sessions around, the odd cancellation.
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = headers_for(random.choice(["manager", "coach", "member"]))

    @task(50)
    def browse_day(self):
        resp = self.client.get(
            "/api/v1/bookings/", params={"date": random_day()}, headers=self.headers, name="/api/v1/bookings/?date="
        )
        if resp.status_code == 200:
            for booking in resp.json():
                if booking["id"] not in BOOKING_IDS:
                    BOOKING_IDS.append(booking["id"])

    @task(10)
    def book_court(self):
        resp = self.client.post(
            "/api/v1/bookings/",
            json={
                "resources": random.sample(COURTS, random.choice([1, 1, 1, 2])),
                "date": random_day(),
                "start_time": f"{random.randint(7, 19):02d}:{random.choice([0, 30]):02d}",
                "duration_minutes": random.choice([60, 90, 120]),
            },
            headers=self.headers,
            name="/api/v1/bookings/",
        )
        if resp.status_code == 201:
            BOOKING_IDS.append(resp.json()["id"])

    @task(5)
    def drag_booking(self):
        if BOOKING_IDS:
            self.client.put(
                f"/api/v1/bookings/{random.choice(BOOKING_IDS)}/reschedule",
                json={"start_time": f"{random.randint(7, 19):02d}:00"},
                headers=self.headers,
                name="/api/v1/bookings/{id}/reschedule",
            )

    @task(2)
    def cancel_booking(self):
        if BOOKING_IDS:
            self.client.delete(
                f"/api/v1/bookings/{BOOKING_IDS.pop(random.randrange(len(BOOKING_IDS)))}",
                headers=self.headers,
                name="/api/v1/bookings/{id}",
            )
