"""Global configuration constants."""

import os

# Google Cloud Project ID
PROJECT_ID = os.environ.get("GCLOUD_PROJECT", "storytime-bedtime")

# Cloud Storage buckets
MEDIA_BUCKET_NAME = os.environ.get(
  "STORYTIME_MEDIA_BUCKET",
  f"{PROJECT_ID}.firebasestorage.app",
)
PUBLIC_STORAGE_HOST = "storage.googleapis.com"

# Firestore collections
STORIES_COLLECTION = "stories"
USERS_COLLECTION = "users"
AUDIOS_COLLECTION = "audios"
CONTACT_MESSAGES_COLLECTION = "contactMessages"

# Storage path prefixes
PROFILE_IMAGES_PREFIX = "profile-images"
CHILD_PROFILE_IMAGES_PREFIX = "child-profiles"
STORY_AUDIO_PREFIX = "story-audio"

# Story list defaults
FAVORITE_STORIES_LIMIT = 10
RECENT_STORIES_LIMIT = 5

# Seconds before a child story fetch is abandoned by the HTTP layer
CHILD_STORIES_FETCH_TIMEOUT_SEC = float(
  os.environ.get("STORYTIME_FETCH_TIMEOUT_SEC", "20"))

# Web origins allowed to call the HTTP functions
WEB_ORIGINS = (
  "https://storytime-bedtime.web.app",
  "https://storytime-bedtime.firebaseapp.com",
)
EMULATOR_WEB_ORIGINS = (
  "http://127.0.0.1:3000",
  "http://localhost:3000",
  "http://127.0.0.1:5000",
  "http://localhost:5000",
)
