"""Cloud Functions entry point."""

import logging

from common import firebase_init
from functions import story_fns, user_fns

# Configure basic logging for the application (primarily for emulator visibility)
logging.basicConfig(level=logging.INFO)

app = firebase_init.app

# Export the story functions
get_child_stories = story_fns.get_child_stories
get_my_stories = story_fns.get_my_stories
toggle_story_favorite = story_fns.toggle_story_favorite
set_story_published = story_fns.set_story_published
upload_story_audio = story_fns.upload_story_audio

# Export the user functions
on_user_created = user_fns.on_user_created
initialize_user_http = user_fns.initialize_user_http
