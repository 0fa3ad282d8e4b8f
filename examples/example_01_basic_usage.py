"""Example 01: Basic Usage - storing and reading coin prices.

This example demonstrates the fundamental operations:
- Opening a repository from a storage URI
- Writing single records and batches with put() / put_many()
- Reading by key with get() / get_many()
- Partial updates and deletes, and the NotFoundError they raise

Swap the URI for ``dynamodb://<table>`` to run the same code against DynamoDB.
"""

from pricevault import NotFoundError, open_repository
from pricevault.observability import setup_logging


def main():
    """Run the basic usage example."""
    print("=" * 80)
    print("PRICEVAULT BASIC USAGE EXAMPLE")
    print("=" * 80)

    setup_logging("WARNING", json_logs=False)

    # Step 1: Open a repository
    # Records are addressed by the attributes named in key_field_names.
    repo = open_repository("duckdb://?table=prices", key_field_names=["id"])

    # Step 2: Write records
    repo.put({"id": "btc-1700000000"}, {"coin_id": "btc", "timestamp": 1700000000, "usd": 37120.5})
    repo.put_many(
        [
            ({"id": f"eth-{ts}"}, {"coin_id": "eth", "timestamp": ts, "usd": 2000.0 + i * 12.5})
            for i, ts in enumerate(range(1700000000, 1700003600, 600))
        ]
    )

    # Step 3: Read them back
    print("\nSingle read:")
    print(repo.get({"id": "btc-1700000000"}))

    print("\nBatch read:")
    for record in repo.get_many([{"id": "eth-1700000000"}, {"id": "eth-1700000600"}]):
        print(f"  {record['id']}: ${record['usd']}")

    # Step 4: Partial update; createdAt survives, updatedAt is stamped
    repo.partial_update({"id": "btc-1700000000"}, {"usd": 37200.25, "source": "coingecko"})
    print("\nAfter update:")
    print(repo.get({"id": "btc-1700000000"}))

    # Step 5: Deleting a missing record is an error
    repo.delete({"id": "btc-1700000000"})
    try:
        repo.delete({"id": "btc-1700000000"})
    except NotFoundError as e:
        print(f"\nExpected error: {e}")

    repo.close()


if __name__ == "__main__":
    main()
