"""Product sync Pydantic schemas for request/response validation.

Field names on the wire are camelCase; Python attributes stay snake_case.
"""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from channelsync.sync.models import AttributeSet


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class SalesChannelsRequest(BaseModel):
    """Sales channels to publish a single product to."""

    model_config = ConfigDict(populate_by_name=True)

    sales_channels: List[str] = Field(..., alias="salesChannels", min_length=1)


class BulkUpdateSalesChannelsRequest(BaseModel):
    """Publish many products to the same set of sales channels."""

    model_config = ConfigDict(populate_by_name=True)

    product_ids: List[Union[str, int]] = Field(..., alias="productIds", min_length=1)
    sales_channels: List[str] = Field(..., alias="salesChannels", min_length=1)

    @field_validator("product_ids")
    @classmethod
    def stringify_ids(cls, v: List[Union[str, int]]) -> List[str]:
        return [str(i) for i in v]


class AttributeValues(BaseModel):
    """Marketplace attributes. Missing or blank values are left untouched."""

    model_config = ConfigDict(populate_by_name=True)

    category: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    gender: Optional[str] = None
    age_group: Optional[str] = Field(None, alias="ageGroup")

    def to_attribute_set(self) -> AttributeSet:
        return AttributeSet(
            category=self.category,
            color=self.color,
            size=self.size,
            gender=self.gender,
            age_group=self.age_group,
        )


class AttributeUpdateRequest(BaseModel):
    """Set the same attributes on many products."""

    model_config = ConfigDict(populate_by_name=True)

    product_ids: List[Union[str, int]] = Field(..., alias="productIds", min_length=1)
    attributes: AttributeValues

    @field_validator("product_ids")
    @classmethod
    def stringify_ids(cls, v: List[Union[str, int]]) -> List[str]:
        return [str(i) for i in v]


class AutoAttributeUpdateRequest(BaseModel):
    """Detect attributes from each product's title and tags, then set them."""

    model_config = ConfigDict(populate_by_name=True)

    product_ids: List[Union[str, int]] = Field(..., alias="productIds", min_length=1)

    @field_validator("product_ids")
    @classmethod
    def stringify_ids(cls, v: List[Union[str, int]]) -> List[str]:
        return [str(i) for i in v]


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class FailureSummary(BaseModel):
    """One distinct failure cause and how many products it affected."""

    error: str
    count: int


class UpdateResponse(BaseModel):
    """Aggregate result of a bulk update."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    updated_products: List[str] = Field(default_factory=list, alias="updatedProducts")
    failed_products: List[str] = Field(default_factory=list, alias="failedProducts")
    failure_summary: List[FailureSummary] = Field(default_factory=list, alias="failureSummary")


class SalesChannelsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sales_channels: List[str] = Field(..., alias="salesChannels")


class ProductChannelsUpdateResponse(BaseModel):
    """Result of publishing a single product."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    published_channels: List[str] = Field(..., alias="publishedChannels")
    ignored_channels: List[str] = Field(default_factory=list, alias="ignoredChannels")


class MissingChannelsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_ids: List[str] = Field(..., alias="productIds")
    count: int


class ProductSummary(BaseModel):
    """One catalog entry in the product listing."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_at: Optional[str] = Field(None, alias="createdAt")


class ProductListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    products: List[ProductSummary]
    count: int
