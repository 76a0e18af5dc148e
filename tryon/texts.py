"""User-facing texts of the chat surface."""

START_TEXT = (
    "👋 Hi! I can show you how an outfit would look on a person.\n\n"
    "1. Send a photo of the person.\n"
    "2. Send a photo of the outfit.\n"
    "3. Press “✨ Virtually Try On”."
)
RESET_TEXT = "🔄 Starting over. Send a photo of the person."
PERSON_RECEIVED = "✅ Person photo saved. Now send a photo of the outfit."
OUTFIT_RECEIVED = "✅ Outfit photo saved. Press the button to try it on."
OUTFIT_REPLACED = "✅ Outfit photo replaced. Press the button to try it on."
NOT_AN_IMAGE = "Please send a photo or an image file."
GENERATING = "⏳ Generating your try-on… this can take a minute."
ALREADY_GENERATING = "A try-on is already being generated, please wait."
ERROR_PREFIX = "⚠️ Error: "
TRY_ON_BUTTON = "✨ Virtually Try On"
RESET_BUTTON = "🔄 Start over"
RESULT_CAPTION = "Here is your try-on!"
