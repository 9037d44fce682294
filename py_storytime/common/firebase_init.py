"""Firebase app bootstrap."""

import firebase_admin
from common import config

try:
  app = firebase_admin.get_app()
except ValueError:
  app = firebase_admin.initialize_app(options={
    'projectId': config.PROJECT_ID,
    'storageBucket': config.MEDIA_BUCKET_NAME,
  })
