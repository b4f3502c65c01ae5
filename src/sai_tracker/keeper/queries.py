"""GraphQL documents for the Sai keeper API."""

_BORROWING_FULL = """
        perpBorrowing {
          marketId
          baseToken {
            symbol
            name
          }
          collateralToken {
            symbol
          }
        }"""

_TRADE_FIELDS = """
        id
        trader
        isOpen
        isLong
        tradeType
        leverage
        collateralAmount
        openCollateralAmount
        openPrice
        closePrice
        sl
        tp{borrowing}
        openBlock {{
          block
          block_ts
        }}
        closeBlock {{
          block
          block_ts
        }}
        state {{
          pnlCollateral
          pnlPct
          pnlCollateralAfterFees
          positionValue
          liquidationPrice
          borrowingFeeCollateral
          borrowingFeePct
          closingFeeCollateral
          closingFeePct
          remainingCollateralAfterFees
        }}"""

_TRADES_TEMPLATE = """
  query GetTrades($trader: String!, $limit: Int, $offset: Int) {{
    perp {{
      trades(
        where: {{ trader: $trader }}
        limit: $limit
        offset: $offset
        order_by: sequence
        order_desc: true
      ) {{{fields}
      }}
    }}
  }}
"""

# perpBorrowing can be null for deprecated markets, which fails the whole
# query; the reduced variant drops it and pairs are inferred from price.
TRADES_QUERY = _TRADES_TEMPLATE.format(fields=_TRADE_FIELDS.format(borrowing=_BORROWING_FULL))
TRADES_QUERY_REDUCED = _TRADES_TEMPLATE.format(fields=_TRADE_FIELDS.format(borrowing=""))

_HISTORY_FIELDS = """
        id
        tradeChangeType
        txHash
        block {{
          block
          block_ts
        }}
        trade {{
          id
          isLong
          leverage
          openPrice
          closePrice
          openCollateralAmount{borrowing}
        }}
        realizedPnlCollateral
        realizedPnlPct
        collateralPrice"""

_HISTORY_TEMPLATE = """
  query GetTradeHistory($trader: String!, $limit: Int, $offset: Int) {{
    perp {{
      tradeHistory(
        where: {{ trader: $trader }}
        limit: $limit
        offset: $offset
        order_by: sequence
        order_desc: true
      ) {{{fields}
      }}
    }}
  }}
"""

_HISTORY_BORROWING = """
          perpBorrowing {
            marketId
            baseToken {
              symbol
            }
            collateralToken {
              symbol
            }
          }"""

TRADE_HISTORY_QUERY = _HISTORY_TEMPLATE.format(fields=_HISTORY_FIELDS.format(borrowing=_HISTORY_BORROWING))
TRADE_HISTORY_QUERY_REDUCED = _HISTORY_TEMPLATE.format(fields=_HISTORY_FIELDS.format(borrowing=""))

GLOBAL_TRADE_HISTORY_QUERY = """
  query GetGlobalTradeHistory($limit: Int, $offset: Int) {
    perp {
      tradeHistory(
        limit: $limit
        offset: $offset
        order_by: sequence
        order_desc: true
      ) {
        id
        tradeChangeType
        trade {
          id
          leverage
          openCollateralAmount
          perpBorrowing {
            collateralToken {
              symbol
            }
          }
        }
        collateralPrice
      }
    }
  }
"""

FEE_TRANSACTIONS_QUERY = """
  query GetFeeTransactions($trader: String!, $limit: Int) {
    perp {
      feeTransactions(
        where: { trader: $trader }
        limit: $limit
        order_by: sequence
        order_desc: true
      ) {
        id
        tradeId
        txHash
        tradeChangeType
      }
    }
  }
"""

MARKETS_QUERY = """
  query GetMarkets {
    perp {
      borrowings {
        marketId
        baseToken {
          symbol
        }
        collateralToken {
          symbol
        }
        price
        oiLong
        oiShort
      }
    }
    oracle {
      tokenPricesUsd {
        token {
          symbol
        }
        priceUsd
      }
    }
  }
"""

OPEN_TRADES_QUERY = """
  query GetOpenTrades($limit: Int) {
    perp {
      trades(where: { isOpen: true }, limit: $limit) {
        id
        isLong
        perpBorrowing {
          marketId
        }
      }
    }
  }
"""

VAULTS_QUERY = """
  query GetVaults {
    lp {
      vaults {
        address
        collateralToken {
          symbol
        }
        tvl
        apy
        sharePrice
      }
    }
  }
"""

VAULT_DEPOSITS_QUERY = """
  query GetVaultDeposits($depositor: String!, $limit: Int) {
    lp {
      depositHistory(
        where: { depositor: $depositor }
        limit: $limit
        order_by: sequence
        order_desc: true
      ) {
        id
        isWithdraw
        amount
        shares
        txHash
        block {
          block
          block_ts
        }
        vault {
          address
          collateralToken {
            symbol
          }
          tvl
          apy
          sharePrice
        }
      }
    }
  }
"""
