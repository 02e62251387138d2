from ecowire.scoring import categorize_product, sustainability_score


def test_categorize_product():
    assert categorize_product("Bamboo Fiber Dinner Plates Set") == "Home & Garden"
    assert categorize_product("Solar Powered Phone Charger") == "Electronics"
    assert categorize_product("Reusable Beeswax Food Wraps") == "Food & Kitchen"
    assert categorize_product("Shampoo Bar") == "Personal Care"
    assert categorize_product("Hemp Backpack") == "General"


def test_sustainability_score_is_capped():
    assert sustainability_score("LED Smart Light Bulbs", "Brightly") == 70
    assert sustainability_score("Solar Powered Phone Charger", "SunPower") == 75
    assert (
        sustainability_score("Organic Bamboo Solar Eco Kit", "Sustainable Green Co") == 98
    )
