"""Generate a fake collection catalog for testing and development.

Writes a CSV in the format read by ``CsvCatalogClient``: one row per
collection with a title, handle, HTML description, a ``|``-separated product
sample and a source timestamp. A share of the collections is gendered and a
few are sale collections, so the compatibility filter and the sale exclusion
both have something to do.

Example:
    Run the script directly to generate default data:
        $ python scripts/generate_fake_catalog.py

    Or import and use programmatically:
        from scripts.generate_fake_catalog import generate_fake_catalog
        df = generate_fake_catalog(num_collections=40)
"""

import argparse
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pandas as pd

DEFAULT_NUM_COLLECTIONS = 30
DEFAULT_SALE_SHARE = 0.1
DEFAULT_PRODUCTS_PER_COLLECTION = 8

AUDIENCES = {
    "men": ["Men's", "Mens"],
    "women": ["Women's", "Ladies"],
    "unisex": ["Men's & Women's"],
    "unknown": [""],
}

CATEGORIES = {
    "shirts": ["Oxford Shirt", "Linen Shirt", "Flannel Shirt", "Denim Shirt"],
    "jackets": ["Rain Jacket", "Puffer Jacket", "Bomber Jacket", "Field Jacket"],
    "shoes": ["Running Shoe", "Leather Boot", "Canvas Sneaker", "Loafer"],
    "knitwear": ["Merino Sweater", "Cardigan", "Cable Knit Jumper", "Turtleneck"],
    "accessories": ["Wool Scarf", "Leather Belt", "Beanie", "Canvas Tote"],
    "swimwear": ["Swim Short", "Bikini Set", "One Piece", "Rash Guard"],
    "activewear": ["Training Tee", "Running Tight", "Track Jacket", "Sports Bra"],
    "home": ["Linen Throw", "Ceramic Mug", "Scented Candle", "Cotton Towel"],
}

DESCRIPTIONS = [
    "<p>Everyday <strong>{category}</strong> built to last.</p>",
    "<p>Our favourite {category} for the season &amp; beyond.</p>",
    "<div><p>Discover {category} in natural fabrics.</p><br/></div>",
]


def generate_fake_catalog(
    num_collections: int = DEFAULT_NUM_COLLECTIONS,
    sale_share: float = DEFAULT_SALE_SHARE,
    products_per_collection: int = DEFAULT_PRODUCTS_PER_COLLECTION,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Generate a synthetic collection catalog.

    Args:
        num_collections: Number of collections. Must be positive.
        sale_share: Fraction of collections turned into sale collections.
        products_per_collection: Product titles sampled per collection.
        seed: Random seed for reproducible catalogs.

    Returns:
        A DataFrame with columns ``external_id``, ``handle``, ``title``,
        ``description_html``, ``product_titles`` and ``updated_at``. Handles
        are unique.

    Raises:
        ValueError: If ``num_collections`` is not positive or ``sale_share``
            is outside [0, 1].
    """
    if num_collections <= 0:
        raise ValueError("num_collections must be positive")
    if not 0 <= sale_share <= 1:
        raise ValueError("sale_share must be within [0, 1]")

    rng = random.Random(seed)
    now = datetime.now(timezone.utc)
    rows = []
    seen_handles = set()

    for index in range(num_collections):
        category = rng.choice(sorted(CATEGORIES))
        audience = rng.choice(sorted(AUDIENCES))
        prefix = rng.choice(AUDIENCES[audience])
        is_sale = rng.random() < sale_share

        title = " ".join(part for part in (prefix, category.title()) if part)
        if is_sale:
            title = f"{title} Sale"

        handle = title.lower().replace("'", "").replace("&", "and")
        handle = "-".join(handle.split())
        if handle in seen_handles:
            handle = f"{handle}-{index}"
        seen_handles.add(handle)

        products = rng.sample(
            CATEGORIES[category], k=min(products_per_collection, len(CATEGORIES[category]))
        )

        rows.append(
            {
                "external_id": f"gid://shopify/Collection/{1000 + index}",
                "handle": handle,
                "title": title,
                "description_html": rng.choice(DESCRIPTIONS).format(category=category),
                "product_titles": "|".join(products),
                "updated_at": (now - timedelta(days=rng.randrange(90))).isoformat(),
            }
        )

    return pd.DataFrame(rows)


def main() -> None:
    """Generate a catalog and save it to data/fake_catalog.csv."""
    parser = argparse.ArgumentParser(description="Generate a fake collection catalog")
    parser.add_argument("--num-collections", type=int, default=DEFAULT_NUM_COLLECTIONS)
    parser.add_argument("--sale-share", type=float, default=DEFAULT_SALE_SHARE)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument(
        "--output",
        type=str,
        default=str(Path(__file__).parent.parent / "data" / "fake_catalog.csv"),
    )
    args = parser.parse_args()

    print(f"Generating {args.num_collections} fake collections...")

    try:
        df = generate_fake_catalog(
            num_collections=args.num_collections,
            sale_share=args.sale_share,
            seed=args.seed,
        )
    except ValueError as e:
        print(f"Error generating catalog: {e}")
        return

    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=False)

    print("\nCatalog generated successfully!")
    print(f"Saved to: {output_path}")
    print("\nCatalog preview:")
    print(df[["handle", "title"]].head(10))
    print(f"\n  Total collections: {len(df)}")
    print(f"  Sale collections: {df['title'].str.endswith(' Sale').sum()}")


if __name__ == "__main__":
    main()
