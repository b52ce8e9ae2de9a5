#!/usr/bin/env python3
"""
Seed script — creates a small social graph for poking at the API.

Creates:
  • 8 users (each gets an access token)
  • A follow graph (each user follows 3 others)
  • 3 posts per user, with likes and comments from followers
  • A direct message from every user to one of their followees

Run after docker compose up:
  python scripts/seed_data.py --api-url http://localhost:8000

Tokens are printed so you can use them in curl commands and on /ws.
"""
import argparse
import json
import random
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Optional


BASE_USERS = [
    ("alice", "alice@example.com"),
    ("bob_builder", "bob@example.com"),
    ("carol_codes", "carol@example.com"),
    ("dave_designs", "dave@example.com"),
    ("eve_engineer", "eve@example.com"),
    ("frank_photos", "frank@example.com"),
    ("grace_graphs", "grace@example.com"),
    ("henry_hikes", "henry@example.com"),
]

SAMPLE_POSTS = [
    "Sunrise from the ridge this morning. Worth the 5am alarm.",
    "Finally finished the bookshelf. Only one screw left over.",
    "Trying a new sourdough recipe, wish me luck.",
    "Anyone else think the second season was better than the first?",
    "First 10k done! Legs are not speaking to me.",
    "New desk setup, who dis.",
    "Rainy day, tea, and a good book.",
    "Found this little cafe around the corner and now I live here.",
    "Throwback to last summer's road trip.",
    "Weekend project: teaching the dog to fetch. The dog has other plans.",
]

SAMPLE_COMMENTS = ["Love this!", "So good", "Where is this?", "Amazing", "Need the recipe"]


@dataclass
class ApiClient:
    base_url: str

    def request(self, method: str, path: str, token: Optional[str] = None, data: Optional[dict] = None) -> dict:
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        body = json.dumps(data).encode() if data is not None else None
        req = urllib.request.Request(url, data=body, headers=headers, method=method)
        try:
            with urllib.request.urlopen(req, timeout=10) as resp:
                return json.loads(resp.read())
        except urllib.error.HTTPError as e:
            print(f"  HTTP {e.code} on {method} {path}: {e.read().decode()}")
            return {}

    def post(self, path: str, token: Optional[str] = None, data: Optional[dict] = None) -> dict:
        return self.request("POST", path, token, data if data is not None else {})

    def get(self, path: str, token: Optional[str] = None) -> dict:
        return self.request("GET", path, token)


def wait_for_api(client: ApiClient, retries: int = 15) -> None:
    print(f"Waiting for API at {client.base_url} ...")
    for _ in range(retries):
        try:
            if client.get("/health").get("status") == "ok":
                print("  API is ready!\n")
                return
        except urllib.error.URLError:
            pass
        time.sleep(3)
    raise RuntimeError(f"API not reachable at {client.base_url} after {retries} retries")


def main(api_url: str) -> None:
    client = ApiClient(api_url)
    wait_for_api(client)

    # ── Create users ─────────────────────────────────────────────────────
    print("Creating users...")
    tokens: dict[str, str] = {}
    for name, email in BASE_USERS:
        result = client.post("/users/", data={"email": email, "name": name})
        if result.get("token"):
            tokens[result["user"]["id"]] = result["token"]
            print(f"  ✓ {name} ({result['user']['id']})")
        else:
            print(f"  ✗ Failed to create {name}")

    user_ids = list(tokens)
    if len(user_ids) < 2:
        print("Not enough users created — aborting")
        return

    # ── Create follow graph ───────────────────────────────────────────────
    print("\nCreating follow relationships...")
    followees: dict[str, list[str]] = {}
    for follower_id in user_ids:
        others = [u for u in user_ids if u != follower_id]
        followees[follower_id] = random.sample(others, k=min(3, len(others)))
        for followee_id in followees[follower_id]:
            client.post(f"/users/{followee_id}/follow", tokens[follower_id])
    print("  ✓ Follow graph created")

    # ── Create posts, likes and comments ──────────────────────────────────
    print("\nCreating posts...")
    posts = 0
    for user_id in user_ids:
        fans = [u for u in user_ids if user_id in followees[u]]
        for content in random.sample(SAMPLE_POSTS, k=3):
            post = client.post("/posts/", tokens[user_id], {"content": content}).get("post")
            if not post:
                continue
            posts += 1
            for fan in fans:
                client.post(f"/posts/{post['id']}/like", tokens[fan])
                if random.random() < 0.5:
                    client.post(
                        f"/posts/{post['id']}/comments",
                        tokens[fan],
                        {"content": random.choice(SAMPLE_COMMENTS)},
                    )
    print(f"  ✓ {posts} posts created")

    # ── Direct messages ───────────────────────────────────────────────────
    print("\nSending messages...")
    for sender_id in user_ids:
        recipient_id = followees[sender_id][0]
        client.post(f"/messages/{recipient_id}", tokens[sender_id], {"message": "Hey! Loved your last post."})
    print(f"  ✓ {len(user_ids)} messages sent")

    # ── Print summary ─────────────────────────────────────────────────────
    u = user_ids[0]
    token = tokens[u]
    print("\n" + "=" * 60)
    print("Seed complete! Here are some commands to try:\n")
    print(f"# Notifications for '{BASE_USERS[0][0]}':")
    print(f"  curl -s -H 'Authorization: Bearer {token}' '{api_url}/notifications/' | python3 -m json.tool\n")
    print("# Conversations and unread count:")
    print(f"  curl -s -H 'Authorization: Bearer {token}' '{api_url}/messages/conversations' | python3 -m json.tool")
    print(f"  curl -s -H 'Authorization: Bearer {token}' '{api_url}/messages/unread/count'\n")
    print("# Live events (any WebSocket client):")
    print(f"  websocat '{api_url.replace('http', 'ws', 1)}/ws?token={token}'\n")
    print("# Check Jaeger traces: http://localhost:16686")
    print("# Check Prometheus metrics: " + f"{api_url}/metrics")
    print("=" * 60)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the SocialHub API")
    parser.add_argument("--api-url", default="http://localhost:8000", help="API base URL")
    args = parser.parse_args()
    main(args.api_url)
