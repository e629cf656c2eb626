import os
from dotenv import load_dotenv

load_dotenv()

lnbits_url = os.getenv("LNBITS_URL", "https://demo.lnbits.com")
admin_key = os.getenv("LNBITS_ADMIN_KEY", "")
request_timeout = float(os.getenv("LNBITS_TIMEOUT", "10"))

if __name__ == "__main__":
    print(lnbits_url, request_timeout, bool(admin_key))
