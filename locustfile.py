from locust import HttpUser, task, between
import random


class ShopperUser(HttpUser):
    wait_time = between(0.1, 0.5)

    def on_start(self):
        # Pick up the catalog once for this simulated client
        r = self.client.get("/flashdisks", params={"limit": 100})
        self.flashdisks = r.json()["items"] if r.status_code == 200 else []
        r = self.client.get("/games", params={"limit": 100, "status": "available"})
        self.games = r.json()["items"] if r.status_code == 200 else []

    @task(3)
    def browse_games(self):
        term = random.choice(["", "a", "rpg", "action"])
        self.client.get("/games", params={"search": term, "page": 1, "limit": 10}, name="/games")

    @task(1)
    def place_order(self):
        if not self.flashdisks or not self.games:
            return
        disk = random.choice(self.flashdisks)
        picks = random.sample(self.games, k=min(len(self.games), random.randint(1, 3)))
        # orders that do not fit the chosen disk are an expected 400
        with self.client.post(
            "/transactions",
            json={
                "user_name": f"shopper_{random.randint(1, 1_000_000)}",
                "user_address": "Load Test Street 1",
                "flashdisk_id": disk["id"],
                "games": [{"id": g["id"]} for g in picks],
            },
            name="/transactions",
            catch_response=True,
        ) as resp:
            if resp.status_code in (201, 400):
                resp.success()
