from pubapp import create_app
import os

app = create_app()

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8123"))
    debug = os.getenv("FLASK_DEBUG", "false").lower() == "true"
    app.run(host="0.0.0.0", port=port, debug=debug)
