import logging

import uvicorn
from dotenv import load_dotenv

from daybrief.config import load_config

def main():
    load_dotenv()
    cfg = load_config()
    logging.basicConfig(level=cfg.log_level.upper(),
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    # Suppress Google API client logs
    logging.getLogger('googleapiclient').setLevel(logging.ERROR)
    logging.getLogger('google.auth').setLevel(logging.ERROR)
    logging.getLogger('google_auth_oauthlib').setLevel(logging.ERROR)
    print(f"Server running at http://{cfg.host}:{cfg.port}")
    uvicorn.run("daybrief.main:create_app", factory=True, host=cfg.host, port=cfg.port,
                log_level=cfg.log_level.lower())

if __name__ == "__main__":
    main()
