# app/shopify/queries.py
# GraphQL Admin API documents used by ShopifyGraphQLGateway.

SHOP_QUERY = """
query { shop { id name email myshopifyDomain } }
"""

PRODUCT_CREATE = """
mutation productCreate($input: ProductInput!, $media: [CreateMediaInput!]) {
  productCreate(input: $input, media: $media) {
    product {
      id
      title
      handle
      status
      variants(first: 100) { edges { node { id sku price title } } }
    }
    userErrors { field message }
  }
}
"""

PRODUCT_UPDATE = """
mutation productUpdate($input: ProductInput!) {
  productUpdate(input: $input) {
    product { id title handle }
    userErrors { field message }
  }
}
"""

VARIANTS_BULK_UPDATE = """
mutation productVariantsBulkUpdate($productId: ID!, $variants: [ProductVariantsBulkInput!]!) {
  productVariantsBulkUpdate(productId: $productId, variants: $variants) {
    productVariants { id sku price compareAtPrice }
    userErrors { field message }
  }
}
"""

PRODUCT_DELETE = """
mutation productDelete($input: ProductDeleteInput!) {
  productDelete(input: $input) {
    deletedProductId
    userErrors { field message }
  }
}
"""

PRODUCT_QUERY = """
query getProduct($id: ID!) {
  product(id: $id) {
    id
    title
    handle
    status
    variants(first: 100) { edges { node { id sku price inventoryQuantity updatedAt } } }
  }
}
"""

PRODUCTS_SEARCH = """
query searchProducts($query: String!, $first: Int!) {
  products(query: $query, first: $first) {
    edges {
      node {
        id
        title
        handle
        status
        variants(first: 100) { edges { node { id sku price } } }
      }
    }
  }
}
"""

PRODUCTS_PAGE = """
query getProducts($first: Int!, $after: String) {
  products(first: $first, after: $after) {
    edges {
      node {
        id
        title
        handle
        status
        createdAt
        updatedAt
        variants(first: 100) { edges { node { id title sku price inventoryQuantity } } }
      }
      cursor
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

PRODUCT_CREATE_MEDIA = """
mutation productCreateMedia($productId: ID!, $media: [CreateMediaInput!]!) {
  productCreateMedia(productId: $productId, media: $media) {
    media { alt mediaContentType status }
    mediaUserErrors { field message }
  }
}
"""
