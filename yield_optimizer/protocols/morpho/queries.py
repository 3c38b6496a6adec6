"""GraphQL queries for the Morpho Blue API."""

MORPHO_API_URL = "https://blue-api.morpho.org/graphql"

MARKET_QUERY = """
query GetMarket($uniqueKey: String!, $chainId: Int!) {
    marketByUniqueKey(uniqueKey: $uniqueKey, chainId: $chainId) {
        uniqueKey
        lltv
        loanAsset { address symbol decimals }
        collateralAsset { address symbol decimals }
        state {
            supplyApy
            borrowApy
            utilization
            supplyAssets
            borrowAssets
            supplyShares
            borrowShares
            liquidityAssets
            rewards { supplyApr }
        }
    }
}
"""

POSITION_QUERY = """
query GetMarketPosition($userAddress: String!, $uniqueKey: String!, $chainId: Int!) {
    marketPosition(userAddress: $userAddress, marketUniqueKey: $uniqueKey, chainId: $chainId) {
        state {
            supplyShares
            supplyAssets
            borrowShares
            borrowAssets
        }
    }
}
"""
