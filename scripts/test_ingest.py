import argparse
import pathlib
import sys

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from src.app.deps import get_pipeline
from src.app.domain.errors import IngestionError
from src.app.domain.models import ImagePage, ParseResult

MIME_BY_SUFFIX = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".pdf": "application/pdf",
}


def show(result: ParseResult) -> None:
    diagnostics = result.diagnostics
    print("type:", result.input_type.value)
    print("record_id:", result.record_id)
    print("cache_key:", result.cache_key)
    print("from_cache:", diagnostics.from_cache, f"({diagnostics.cache_match.value})")
    print("fetch_method:", diagnostics.fetch_method)
    print("provider:", diagnostics.provider, "fallback:", diagnostics.used_fallback)
    print("timings_ms:", diagnostics.timings_ms)
    print("tokens:", diagnostics.usage.input_tokens, "/", diagnostics.usage.output_tokens)
    if result.recipe is not None:
        recipe = result.recipe
        print("title:", recipe.title)
        print("ingredients:", recipe.ingredient_count(), "steps:", len(recipe.instructions))
    for match in result.matches:
        print(f"  match {match.similarity:.3f}: {match.record.data.title} (#{match.record.id})")


def main() -> None:
    parser = argparse.ArgumentParser(description="Quick ingest smoke test")
    parser.add_argument("inputs", nargs="*", default=[
        "https://www.allrecipes.com/recipe/8372/black-magic-cake/",
        "garlic chicken",
    ])
    parser.add_argument("--images", nargs="+", type=pathlib.Path, help="Parse these files as one multi-page recipe")
    parser.add_argument("--force", action="store_true", help="Skip the fuzzy match for dish text")
    args = parser.parse_args()

    pipeline = get_pipeline()

    if args.images:
        pages = [ImagePage(data=path.read_bytes(), mime_type=MIME_BY_SUFFIX.get(path.suffix.lower(), "image/jpeg")) for path in args.images]
        print("\n=== images:", ", ".join(str(path) for path in args.images))
        try:
            show(pipeline.parse_images(pages))
        except IngestionError as error:
            print("failed:", error.code.value, error.message)
        return

    for raw in args.inputs:
        print("\n===", raw)
        try:
            show(pipeline.parse_input(raw, force_new=args.force))
        except IngestionError as error:
            print("failed:", error.code.value, error.message)


if __name__ == "__main__":
    main()
