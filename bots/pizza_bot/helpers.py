# Loaded into every session of this bot; functions here are callable from
# script: blocks and ${} expressions.

WEATHER_URL = "https://api.open-meteo.com/v1/forecast"


def upper(text):
    return str(text).upper()


async def fetch_example():
    data = await fetch_json(WEATHER_URL, params={"latitude": 42.5, "longitude": 27.4, "current_weather": "true"})
    log(data, "data from the fetch example")
    return data["current_weather"]
