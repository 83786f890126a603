import base64
import unittest
from datetime import timezone

from fastapi.testclient import TestClient

from foody.app import create_app
from foody.db import FoodRecord, InMemoryDbClient
from foody.dependencies import (
    get_db_client,
    get_messaging_provider,
    get_storage_client,
)
from foody.schemas import FoodAnalysis
from foody.storage import InMemoryStorageClient
from notifications.messaging import InMemoryMessagingProvider


class FoodyApiTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_app())
        self.db = get_db_client()
        if isinstance(self.db, InMemoryDbClient):
            self.db.reset()
        self.storage = get_storage_client()
        if isinstance(self.storage, InMemoryStorageClient):
            self.storage.stored_objects.clear()
        self.provider = get_messaging_provider()
        if isinstance(self.provider, InMemoryMessagingProvider):
            self.provider.unregistered_tokens.clear()
            self.provider.failing_tokens.clear()
            self.provider.multicast_error = None
            self.provider.single_sends.clear()
            self.provider.multicast_calls.clear()
            self.provider.payloads.clear()

    def _save_user(self, user_id, **fields):
        response = self.client.post("/users", json={"userId": user_id, **fields})
        self.assertEqual(response.status_code, 200)
        return response.json()

    # Users

    def test_save_and_get_user(self):
        saved = self._save_user(
            "u1", email="a@b.test", displayName="Ada", fcmToken="tok-1", age=31
        )
        self.assertTrue(saved["success"])
        self.assertEqual(saved["userId"], "u1")

        response = self.client.get("/users/u1")
        self.assertEqual(response.status_code, 200)
        user = response.json()["user"]
        self.assertEqual(user["displayName"], "Ada")
        self.assertEqual(user["fcmToken"], "tok-1")
        self.assertTrue(user["notificationsEnabled"])
        self.assertIn("createdAt", user)

    def test_save_user_only_patches_sent_fields(self):
        self._save_user("u1", displayName="Ada", fcm_token="tok-1")
        self._save_user("u1", age=40)
        user = self.client.get("/users/u1").json()["user"]
        self.assertEqual(user["displayName"], "Ada")
        self.assertEqual(user["fcmToken"], "tok-1")
        self.assertEqual(user["age"], 40)

    def test_get_missing_user(self):
        self.assertEqual(self.client.get("/users/nobody").status_code, 404)

    # Foods

    def test_food_lifecycle(self):
        created = self.client.post(
            "/foods",
            json={
                "userId": "u1",
                "foodName": "Salad",
                "calories": 320,
                "analysisDate": "2025-03-01T12:00:00Z",
            },
        )
        self.assertEqual(created.status_code, 200)
        food_id = created.json()["foodId"]

        listed = self.client.get("/foods", params={"userId": "u1"}).json()["foods"]
        self.assertEqual([f["id"] for f in listed], [food_id])
        self.assertEqual(listed[0]["foodName"], "Salad")

        deleted = self.client.request(
            "DELETE",
            "/foods",
            json={
                "userId": "u1",
                "foodName": "Salad",
                "analysisDate": "2025-03-01T12:00:00Z",
            },
        )
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(deleted.json()["deletedId"], food_id)

        missing = self.client.request(
            "DELETE",
            "/foods",
            json={
                "userId": "u1",
                "foodName": "Salad",
                "analysisDate": "2025-03-01T12:00:00Z",
            },
        )
        self.assertEqual(missing.status_code, 404)

    def test_delete_food_with_server_assigned_date(self):
        self.client.post("/foods", json={"userId": "u1", "foodName": "Salad"})
        listed = self.client.get("/foods", params={"userId": "u1"}).json()["foods"]
        analysis_date = listed[0]["analysisDate"]

        deleted = self.client.request(
            "DELETE",
            "/foods",
            json={"userId": "u1", "foodName": "Salad", "analysisDate": analysis_date},
        )

        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(deleted.json()["deletedId"], listed[0]["id"])
        self.assertEqual(self.client.get("/foods", params={"userId": "u1"}).json()["foods"], [])

    def test_food_dates_render_to_the_microsecond(self):
        food = FoodAnalysis.model_validate(
            FoodRecord(user_id="u1", food_name="Salad", analysis_date=1760000000.1234567)
        )
        self.assertEqual(food.analysis_date.microsecond, 123457)
        self.assertEqual(food.analysis_date.tzinfo, timezone.utc)

    def test_delete_user_foods_removes_stored_images(self):
        upload = self.client.post(
            "/images",
            json={
                "imageData": base64.b64encode(b"jpeg-bytes").decode(),
                "fileName": "lunch.jpg",
                "contentType": "image/jpeg",
            },
        ).json()
        self.client.post(
            "/foods",
            json={"userId": "u1", "foodName": "Soup", "imageUrl": upload["s3Url"]},
        )
        self.client.post("/foods", json={"userId": "u1", "foodName": "Bread"})
        self.assertIn(upload["fileName"], self.storage.stored_objects)

        response = self.client.delete("/foods/user/u1")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["deletedCount"], 2)
        self.assertNotIn(upload["fileName"], self.storage.stored_objects)
        self.assertEqual(self.client.get("/foods", params={"userId": "u1"}).json()["foods"], [])

    # Images

    def test_upload_and_serve_image(self):
        response = self.client.post(
            "/images",
            json={
                "imageData": base64.b64encode(b"\x89PNG").decode(),
                "fileName": "plate.png",
                "contentType": "image/png",
            },
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["fileName"].startswith("food-image_"))
        self.assertTrue(payload["fileName"].endswith(".png"))
        self.assertEqual(payload["originalFileName"], "plate.png")
        self.assertEqual(
            payload["s3Url"], f"s3://{self.storage.bucket}/{payload['fileName']}"
        )

        by_key = self.client.get("/images", params={"key": payload["fileName"]})
        self.assertEqual(by_key.status_code, 200)
        self.assertEqual(by_key.content, b"\x89PNG")
        self.assertEqual(by_key.headers["content-type"], "image/png")

        by_url = self.client.get("/images", params={"s3url": payload["s3Url"]})
        self.assertEqual(by_url.status_code, 200)

    def test_image_errors(self):
        missing_fields = self.client.post("/images", json={"fileName": "a.jpg"})
        self.assertEqual(missing_fields.status_code, 400)

        foreign = self.client.get("/images", params={"s3url": "s3://other-bucket/a.jpg"})
        self.assertEqual(foreign.status_code, 400)

        missing = self.client.get("/images", params={"key": "food-image_nope.jpg"})
        self.assertEqual(missing.status_code, 404)

    # Notifications

    def test_send_notification(self):
        self._save_user("u1", fcmToken="tok-1")
        self._save_user("u2", fcmToken="tok-2", isPremium=True)
        self._save_user("u3", fcmToken="tok-3", notificationsEnabled=False)

        response = self.client.post(
            "/notifications/send",
            json={
                "filter": {"type": "all"},
                "notification": {"title": "Hi", "body": "Time to log lunch"},
                "data": {"screen": "log"},
            },
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["sentCount"], 2)
        self.assertEqual(body["totalRecipients"], 2)
        self.assertEqual(body["message"], "Sent to 2 users, 0 failed")
        self.assertEqual(len(self.db.list_audit_rows()), 2)

    def test_send_notification_zero_recipients(self):
        response = self.client.post(
            "/notifications/send",
            json={"filter": {"type": "premium"}, "notification": {"title": "a", "body": "b"}},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["totalRecipients"], 0)

    def test_send_notification_validation(self):
        no_notification = self.client.post(
            "/notifications/send", json={"filter": {"type": "all"}}
        )
        self.assertEqual(no_notification.status_code, 400)

        no_filter = self.client.post(
            "/notifications/send", json={"notification": {"title": "a", "body": "b"}}
        )
        self.assertEqual(no_filter.status_code, 400)

        bad_filter = self.client.post(
            "/notifications/send",
            json={"filter": {"type": "age"}, "notification": {"title": "a", "body": "b"}},
        )
        self.assertEqual(bad_filter.status_code, 400)

    # Campaigns

    def test_campaign_end_to_end(self):
        self._save_user("u1", fcmToken="tok-1")
        self._save_user("u2", fcmToken="tok-2")
        self._save_user("u3", fcmToken="tok-3")

        created = self.client.post(
            "/campaigns",
            json={
                "campaignName": "Comeback",
                "title": "We miss you",
                "body": "Log a meal today",
                "filterCriteria": {"type": "userIds", "userIds": ["u1", "u2"]},
            },
        )
        self.assertEqual(created.status_code, 201)
        campaign = created.json()["campaign"]
        self.assertEqual(campaign["status"], "draft")
        campaign_id = campaign["id"]

        updated = self.client.put(
            f"/campaigns/{campaign_id}", json={"notes": "Q3 winback"}
        )
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.json()["campaign"]["notes"], "Q3 winback")

        sent = self.client.post(f"/campaigns/{campaign_id}/send")
        self.assertEqual(sent.status_code, 200)
        results = sent.json()["results"]
        self.assertEqual(results["totalRecipients"], 2)
        self.assertEqual(results["sentCount"], 2)

        fetched = self.client.get(f"/campaigns/{campaign_id}").json()["campaign"]
        self.assertEqual(fetched["status"], "sent")
        self.assertEqual(fetched["successfulSends"], 2)
        rows = self.db.list_audit_rows(campaign_id=campaign_id)
        self.assertEqual(len(rows), 2)
        self.assertTrue(all(r.status == "sent" for r in rows))

        self.assertEqual(self.client.post(f"/campaigns/{campaign_id}/send").status_code, 400)
        immutable = self.client.put(f"/campaigns/{campaign_id}", json={"title": "x"})
        self.assertEqual(immutable.status_code, 400)

    def test_campaign_list_and_delete(self):
        for name in ("A", "B", "C"):
            self.client.post(
                "/campaigns", json={"campaignName": name, "title": "t", "body": "b"}
            )
        listed = self.client.get("/campaigns", params={"limit": 2}).json()
        self.assertEqual(len(listed["campaigns"]), 2)
        self.assertEqual(listed["pagination"]["total"], 3)
        self.assertTrue(listed["pagination"]["hasMore"])

        campaign_id = listed["campaigns"][0]["id"]
        deleted = self.client.delete(f"/campaigns/{campaign_id}")
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(deleted.json()["deletedCampaign"]["id"], campaign_id)
        self.assertEqual(self.client.get(f"/campaigns/{campaign_id}").status_code, 404)

    def test_campaign_validation(self):
        missing = self.client.post("/campaigns", json={"title": "t", "body": "b"})
        self.assertEqual(missing.status_code, 400)

        created = self.client.post(
            "/campaigns", json={"campaignName": "n", "title": "t", "body": "b"}
        ).json()["campaign"]
        bad_transition = self.client.put(
            f"/campaigns/{created['id']}", json={"status": "sent"}
        )
        self.assertEqual(bad_transition.status_code, 400)
        self.assertIn("scheduled", bad_transition.json()["detail"])

        empty = self.client.put(f"/campaigns/{created['id']}", json={})
        self.assertEqual(empty.status_code, 400)

        bad_status = self.client.get("/campaigns", params={"status": "archived"})
        self.assertEqual(bad_status.status_code, 400)


if __name__ == "__main__":
    unittest.main()
