import os
import logging
from dotenv import load_dotenv

load_dotenv()

# Database configuration
DB_CONFIG = {
    'host': os.getenv('DB_HOST', 'localhost'),
    'user': os.getenv('DB_USER', 'root'),
    'password': os.getenv('DB_PASSWORD', ''),
    'database': os.getenv('DB_NAME', 'ielts_practice'),
    'pool_name': 'ielts_pool',
    'pool_size': int(os.getenv('DB_POOL_SIZE', '5'))
}

# Turn off to run without MySQL (scores are still graded and shown)
SAVE_TEST_SCORES = os.getenv('SAVE_TEST_SCORES', 'true').lower() in ('1', 'true', 'yes')

# Test session cookie lifetime in seconds
SESSION_COOKIE_MAX_AGE = int(os.getenv('SESSION_COOKIE_MAX_AGE', '7200'))

# Logging setup
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=os.getenv('LOG_LEVEL', 'INFO').upper()
)
