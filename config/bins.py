"""
BinWatch — Seed Bin Registry
=============================
Bins registered on a fresh store. Operators add more through the `bins`
collection; the core only ever reads it.
"""

BINS = {
    "BIN-001": {"name": "Canteen 1 Main Bin", "location": "Canteen 1", "capacityKg": 5,  "thresholdPct": 80, "active": True},
    "BIN-002": {"name": "Canteen 2 Main Bin", "location": "Canteen 2", "capacityKg": 10, "thresholdPct": 80, "active": True},
}

# Starting weight for the simulator
INITIAL_WEIGHT_KG = {
    "BIN-001": 1.5,
    "BIN-002": 2.0,
}


# Quick stats
if __name__ == "__main__":
    print(f"Total bins: {len(BINS)}")
    for bid, info in BINS.items():
        print(f"  {bid}: {info['location']} ({info['capacityKg']}kg)")
