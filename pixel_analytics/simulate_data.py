import argparse
import random
import time
import uuid

import requests

# Configuration
ANALYTICS_ENDPOINT = "http://localhost:8001/api/track"
STORE_URL = "https://demo-store.myshopify.com"

# Simulation Parameters
NUM_USERS = 20
EVENTS_PER_USER = 10

PRODUCTS = [
    ("8012345678", "Linen Shirt", 49.0),
    ("8012345679", "Canvas Tote", 25.5),
    ("8012345680", "Leather Boots", 189.99),
    ("8012345681", "Wool Beanie", 19.0),
]

PAGES = ["/", "/collections/all", "/pages/about", "/blogs/news"]

REFERRERS = [
    "https://www.google.com/",
    "https://www.facebook.com/",
    "https://www.instagram.com/",
    None,
]

USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (iPad; CPU OS 16_6 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/16.6 Mobile/15E148 Safari/604.1",
]


def generate_session_data(pixel_id):
    screen_res = random.choice([(1920, 1080), (1366, 768), (390, 844), (820, 1180)])
    return {
        "pixelId": pixel_id,
        "visitorId": str(uuid.uuid4()),
        "sessionId": str(uuid.uuid4()),
        "screenWidth": screen_res[0],
        "screenHeight": screen_res[1],
        "language": random.choice(["en-US", "en-GB", "de-DE"]),
    }


def send(session, payload, user_agent):
    try:
        response = session.post(ANALYTICS_ENDPOINT, json=payload, headers={"User-Agent": user_agent}, timeout=5)
        if response.status_code != 200:
            print(f"  !! {payload['eventName']} -> {response.status_code} {response.text}")
    except requests.RequestException as e:
        print(f"Error sending event: {e}")


def simulate_user_journey(session, pixel_id):
    user_data = generate_session_data(pixel_id)
    user_agent = random.choice(USER_AGENTS)
    print(f"Simulating User: {user_data['visitorId'][:8]}...")

    referrer = random.choice(REFERRERS)
    utm = {"utmSource": "facebook", "utmMedium": "cpc", "utmCampaign": "spring_sale"} if referrer and "facebook" in referrer else {}

    for _ in range(random.randint(2, EVENTS_PER_USER)):
        # Browse either a content page or a product
        if random.random() < 0.5:
            url = STORE_URL + random.choice(PAGES)
            send(session, {"eventName": "pageview", "url": url, "referrer": referrer, **utm, **user_data}, user_agent)
            referrer = url
            continue

        product_id, name, price = random.choice(PRODUCTS)
        url = f"{STORE_URL}/products/{name.lower().replace(' ', '-')}"
        product = {"productId": product_id, "productName": name, "value": price, "currency": "USD"}
        send(session, {"eventName": "pageview", "url": url, "referrer": referrer, **utm, **user_data}, user_agent)
        send(session, {"eventName": "viewContent", "url": url, **product, **user_data}, user_agent)
        referrer = url

        if random.random() < 0.3:
            quantity = random.randint(1, 3)
            send(
                session,
                {"eventName": "addToCart", "url": url, **product, "quantity": quantity, **user_data},
                user_agent,
            )
            if random.random() < 0.5:
                order = {"value": round(price * quantity, 2), "currency": "USD", "customData": {"order_id": str(uuid.uuid4())[:8]}}
                send(session, {"eventName": "initiateCheckout", "url": STORE_URL + "/checkout", **user_data}, user_agent)
                send(session, {"eventName": "purchase", "url": STORE_URL + "/thank_you", **order, **user_data}, user_agent)
                break

        # Small delay to not overwhelm the server
        time.sleep(0.05)


def main():
    global ANALYTICS_ENDPOINT

    parser = argparse.ArgumentParser(description="Send simulated storefront traffic to the tracking endpoint")
    parser.add_argument("pixel_id", help="Public pixel id to send events for")
    parser.add_argument("--users", type=int, default=NUM_USERS)
    parser.add_argument("--endpoint", default=ANALYTICS_ENDPOINT)
    args = parser.parse_args()
    ANALYTICS_ENDPOINT = args.endpoint

    print(f"Starting simulation of {args.users} users...")
    start_time = time.time()

    with requests.Session() as session:
        for _ in range(args.users):
            simulate_user_journey(session, args.pixel_id)

    print(f"Simulation complete in {time.time() - start_time:.2f}s")


if __name__ == "__main__":
    main()
