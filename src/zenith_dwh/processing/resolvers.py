# Reference resolvers dùng trong cleansing
# - TerritoryResolver: city -> (country, continent), lấy từ erp_territory
# - CategoryNormalizer: subcategory số nhiều -> dạng chuẩn số ít
# Cả hai build một lần mỗi lần chạy và không thay đổi sau khi tạo.

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Set

import pandas as pd

from ..utils.logging_config import get_logger

logger = get_logger(__name__)

UNKNOWN = "Unknown"

DEFAULT_SUBCATEGORY_SUBSTITUTIONS: Dict[str, str] = {
    "Tires": "Tire",
    "Helmets": "Helmet",
    "Road Bikes": "Road",
    "Mountain Bikes": "Mountain",
    "Jerseys": "Jersey",
}


def clean_text(value) -> Optional[str]:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    text = str(value).strip()
    return text or None


def as_objects(values: pd.Series) -> pd.Series:
    # null luôn là None: map trên cột str (pandas 3) đổi None thành NaN
    values = values.astype(object)
    return values.where(values.notna(), None)


@dataclass(frozen=True)
class TerritoryMatch:
    city: str
    country: Optional[str]
    continent: Optional[str]


class TerritoryResolver:
    # Tra cứu city (sau trim, phân biệt hoa thường) -> country/continent chuẩn

    def __init__(self, entries: Optional[Mapping[str, TerritoryMatch]] = None):
        self._entries = MappingProxyType(dict(entries or {}))

    @classmethod
    def empty(cls) -> "TerritoryResolver":
        return cls()

    @classmethod
    def from_frame(cls, territory: Optional[pd.DataFrame]) -> "TerritoryResolver":
        # city trùng: giữ dòng gặp đầu tiên; country/continent "Unknown" không dùng để sửa
        entries: Dict[str, TerritoryMatch] = {}
        if territory is None or territory.empty:
            return cls(entries)

        for row in territory[["city", "country", "continent"]].itertuples(index=False):
            city = clean_text(row.city)
            if city is None or city in entries:
                continue
            country = clean_text(row.country)
            continent = clean_text(row.continent)
            entries[city] = TerritoryMatch(
                city=city,
                country=None if country == UNKNOWN else country,
                continent=None if continent == UNKNOWN else continent,
            )

        logger.info("Territory resolver built", cities=len(entries))
        return cls(entries)

    @property
    def is_empty(self) -> bool:
        return not self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, city) -> bool:
        return self.lookup(city) is not None

    def lookup(self, city) -> Optional[TerritoryMatch]:
        key = clean_text(city)
        if key is None:
            return None
        return self._entries.get(key)

    def country_for(self, city) -> Optional[str]:
        match = self.lookup(city)
        return match.country if match else None

    def continent_for(self, city) -> Optional[str]:
        match = self.lookup(city)
        return match.continent if match else None

    def countries(self, cities: pd.Series) -> pd.Series:
        return as_objects(cities.map(self.country_for))

    def continents(self, cities: pd.Series) -> pd.Series:
        return as_objects(cities.map(self.continent_for))


class CategoryNormalizer:
    # Bảng thay thế đóng cho subcategory; giá trị ngoài bảng giữ nguyên (sau trim)

    def __init__(
        self,
        substitutions: Optional[Mapping[str, str]] = None,
        known_subcategories: Optional[Iterable[str]] = None,
    ):
        if substitutions is None:
            substitutions = DEFAULT_SUBCATEGORY_SUBSTITUTIONS
        self._substitutions = MappingProxyType(dict(substitutions))
        self._known: frozenset = frozenset(known_subcategories or ())

    @classmethod
    def from_frame(
        cls,
        category_map: Optional[pd.DataFrame],
        substitutions: Optional[Mapping[str, str]] = None,
    ) -> "CategoryNormalizer":
        known: Set[str] = set()
        if category_map is not None and not category_map.empty:
            for value in category_map["subcategory"]:
                label = clean_text(value)
                if label is not None and label != UNKNOWN:
                    known.add(label)
        return cls(substitutions, known)

    @property
    def substitutions(self) -> Mapping[str, str]:
        return self._substitutions

    @property
    def known_subcategories(self) -> frozenset:
        return self._known

    def normalize(self, label) -> Optional[str]:
        text = clean_text(label)
        if text is None:
            return None
        return self._substitutions.get(text, text)

    def normalize_series(self, labels: pd.Series) -> pd.Series:
        return as_objects(labels.map(self.normalize))

    def unmatched(self, labels: pd.Series) -> Set[str]:
        # nhãn đã chuẩn hoá nhưng không có trong category map (chỉ để cảnh báo)
        if not self._known:
            return set()
        normalized = {v for v in self.normalize_series(labels).dropna() if v != UNKNOWN}
        return normalized - self._known


@dataclass(frozen=True)
class Resolvers:
    territory: TerritoryResolver
    category: CategoryNormalizer

    @classmethod
    def empty(cls) -> "Resolvers":
        return cls(TerritoryResolver.empty(), CategoryNormalizer())
