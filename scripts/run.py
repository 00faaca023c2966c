# scripts/run.py
import logging

from dotenv import load_dotenv

from botprov.config.loader import get_server_config
from botprov.web.server import create_app

def main():
    load_dotenv()  # CLIENT_ID / CLIENT_SECRET / ENDPOINT_BASE from .env
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    cfg = get_server_config()
    app = create_app()
    logging.getLogger("botprov").info("Bot provisioner listening on http://localhost:%s", cfg["port"])
    app.run(host=cfg["host"], port=cfg["port"])

if __name__ == "__main__":
    main()
