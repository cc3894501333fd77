from __future__ import annotations

from locust import HttpUser, between, task


class SchemaGatewayUser(HttpUser):
    wait_time = between(0.2, 1.0)

    @task(4)
    def list_users_v1(self):
        self.client.get("/users", headers={"API-Version": "v1"}, name="users:list:v1")

    @task(2)
    def list_users_current(self):
        self.client.get("/users", name="users:list:default")

    @task(1)
    def create_user_v1(self):
        payload = {
            "user_id": 42,
            "full_name": "Load Test",
            "user_name": "loadtest",
            "email_address": "loadtest@example.com",
        }
        self.client.post(
            "/users", json=payload, headers={"API-Version": "v1"}, name="users:create:v1"
        )

    @task(1)
    def health(self):
        self.client.get("/health", name="health")
