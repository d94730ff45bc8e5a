from mimirprompt.main import app
import os

if __name__ == "__main__":
    # Importing mimirprompt.main prepares the data directories; the store is
    # opened on the first request. The hosting environment may provide PORT.
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port)
