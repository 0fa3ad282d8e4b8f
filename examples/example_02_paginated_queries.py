"""Example 02: Paginated queries with filters and secondary indexes.

This example demonstrates:
- Registering a secondary index and querying one partition of it
- Building filters with field() and the &, |, ~ operators
- Walking a large result set page by page with last_evaluated_key
"""

from pricevault import IndexSpec, RepositoryConfig, SecondaryIndex, field, open_repository
from pricevault.observability import setup_logging


def main():
    """Run the paginated query example."""
    print("=" * 80)
    print("PRICEVAULT PAGINATED QUERY EXAMPLE")
    print("=" * 80)

    setup_logging("WARNING", json_logs=False)

    repo = open_repository(
        "duckdb://?table=prices",
        key_field_names=["id"],
        indexes={"by_coin": IndexSpec("coin_id", "timestamp")},
        config=RepositoryConfig(page_size=5),
    )

    coins = {"btc": 37000.0, "eth": 2000.0, "sol": 55.0}
    repo.put_many(
        [
            (
                {"id": f"{coin}-{hour:02d}"},
                {"coin_id": coin, "timestamp": 1700000000 + hour * 3600, "usd": base + hour * 1.5},
            )
            for coin, base in coins.items()
            for hour in range(24)
        ]
    )

    # Step 1: One partition of the index, filtered
    expensive_eth = repo.query(
        target=SecondaryIndex("by_coin"),
        partition="eth",
        filter=field("usd") >= 2020.0,
    )
    print(f"\neth prices >= 2020: {len(expensive_eth.items)}")

    # Step 2: Composite filters over a full scan
    predicate = (field("coin_id") == "sol") & ~(field("usd") < 80.0) | (field("id") == "btc-00")
    print(f"sol >= 80 or btc-00: {[r['id'] for r in repo.query(filter=predicate).values]}")

    # Step 3: Page through everything, ten at a time
    print("\nPages of 10:")
    cursor = None
    page = 0
    while True:
        result = repo.query(start_key=cursor, limit=10)
        page += 1
        print(f"  page {page}: {[r['id'] for r in result.values]}")
        cursor = result.last_evaluated_key
        if cursor is None:
            break

    repo.close()


if __name__ == "__main__":
    main()
